"""KRaft Migrator - ZooKeeper to KRaft migration for Strimzi Kafka clusters."""

from .cluster import ClusterConnection
from .config import MigrationOptions, Settings, get_settings
from .controller import MigrationController, MigrationOutcome
from .evacuation import EvacuationResult, PoolEvacuation
from .exceptions import (
    AlreadyMigrated,
    ApplyFailed,
    ClusterNotFound,
    ConfigIncomplete,
    ControlPlaneError,
    DeadlineExceeded,
    MigrationError,
    MissingNodeIds,
    PoolMismatch,
    StatusUnavailable,
)
from .mirror import mirror_replicas, mirror_storage, storage_from_sizes
from .models import (
    KRaftMode,
    MetadataPhase,
    MigrationPhase,
    NodePoolSpec,
    NodeRole,
    PodReadiness,
    RebalanceSpec,
    ResourceKind,
    StorageSpec,
    StorageType,
    Volume,
)
from .poller import Poller, wait_for
from .resources import ResourceAccessor

__version__ = "0.1.0"

__all__ = [
    # Cluster access
    "ClusterConnection",
    "ResourceAccessor",
    # Configuration
    "Settings",
    "get_settings",
    "MigrationOptions",
    # Migration workflow
    "MigrationController",
    "MigrationOutcome",
    "PoolEvacuation",
    "EvacuationResult",
    # Configuration mirroring
    "mirror_replicas",
    "mirror_storage",
    "storage_from_sizes",
    # Polling
    "Poller",
    "wait_for",
    # Models
    "ResourceKind",
    "StorageType",
    "NodeRole",
    "KRaftMode",
    "MigrationPhase",
    "MetadataPhase",
    "Volume",
    "StorageSpec",
    "NodePoolSpec",
    "RebalanceSpec",
    "PodReadiness",
    # Errors
    "MigrationError",
    "ConfigIncomplete",
    "DeadlineExceeded",
    "ApplyFailed",
    "MissingNodeIds",
    "ClusterNotFound",
    "PoolMismatch",
    "StatusUnavailable",
    "ControlPlaneError",
    "AlreadyMigrated",
]
