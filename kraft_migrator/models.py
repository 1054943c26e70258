"""Strimzi resource models for the KRaft migration."""

import logging
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)

STRIMZI_GROUP = "kafka.strimzi.io"
DEFAULT_API_VERSION = f"{STRIMZI_GROUP}/v1beta2"

CLUSTER_LABEL = "strimzi.io/cluster"
KIND_LABEL = "strimzi.io/kind"
NAME_LABEL = "strimzi.io/name"

KRAFT_ANNOTATION = "strimzi.io/kraft"
NODE_POOLS_ANNOTATION = "strimzi.io/node-pools"
REBALANCE_ANNOTATION = "strimzi.io/rebalance"

# Default broker pool name. Only one pool per namespace can own it.
RESERVED_POOL_NAME = "kafka"


class ResourceKind(str, Enum):
    """Strimzi custom resource kinds handled by the migrator."""

    KAFKA = "Kafka"
    NODE_POOL = "KafkaNodePool"
    REBALANCE = "KafkaRebalance"

    @property
    def plural(self) -> str:
        return f"{self.value.lower()}s"


class StorageType(str, Enum):
    """Storage discriminator values."""

    PERSISTENT_CLAIM = "persistent-claim"
    EPHEMERAL = "ephemeral"
    JBOD = "jbod"

    @classmethod
    def parse(cls, value: str) -> "StorageType":
        """Parse a storage type, accepting the long-form CLI aliases."""
        aliases = {"persistent": cls.PERSISTENT_CLAIM, "multi-volume": cls.JBOD}
        normalized = value.strip().lower()
        if normalized in aliases:
            return aliases[normalized]
        return cls(normalized)


class NodeRole(str, Enum):
    """Node pool roles."""

    BROKER = "broker"
    CONTROLLER = "controller"


class KRaftMode(str, Enum):
    """Value of the strimzi.io/kraft annotation."""

    UNSET = ""
    MIGRATION = "migration"
    ENABLED = "enabled"

    @classmethod
    def parse(cls, value: Any) -> "KRaftMode":
        if value is None or value == "" or value == "null":
            return cls.UNSET
        try:
            return cls(str(value).strip())
        except ValueError:
            logger.warning(f"Unrecognized {KRAFT_ANNOTATION} annotation value: {value!r}")
            return cls.UNSET


class MigrationPhase(str, Enum):
    """Progress of the ZooKeeper to KRaft metadata migration."""

    ZK_MODE = "ZooKeeper"
    KRAFT_MIGRATION = "KRaftMigration"
    KRAFT_DUAL_WRITING = "KRaftDualWriting"
    KRAFT_POST_MIGRATION = "KRaftPostMigration"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Any) -> "MigrationPhase":
        if value is None:
            return cls.UNKNOWN
        text = str(value).strip()
        if text == "ZKMode":
            return cls.ZK_MODE
        try:
            return cls(text)
        except ValueError:
            return cls.UNKNOWN

    @property
    def rank(self) -> int:
        return _MIGRATION_ORDER.index(self) if self in _MIGRATION_ORDER else -1

    def reached(self, target: "MigrationPhase") -> bool:
        """True when this phase is the target or a later one."""
        return self is not MigrationPhase.UNKNOWN and self.rank >= target.rank


_MIGRATION_ORDER = (
    MigrationPhase.ZK_MODE,
    MigrationPhase.KRAFT_MIGRATION,
    MigrationPhase.KRAFT_DUAL_WRITING,
    MigrationPhase.KRAFT_POST_MIGRATION,
)


class MetadataPhase(str, Enum):
    """Where the cluster metadata lives."""

    ZOOKEEPER = "ZooKeeper"
    PRE_KRAFT = "PreKRaft"
    KRAFT = "KRaft"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Any) -> "MetadataPhase":
        if value is None:
            return cls.UNKNOWN
        text = str(value).strip()
        # Intermediate migration states still keep metadata in ZooKeeper.
        if MigrationPhase.parse(text) is not MigrationPhase.UNKNOWN:
            return cls.ZOOKEEPER
        try:
            return cls(text)
        except ValueError:
            return cls.UNKNOWN

    @property
    def rank(self) -> int:
        return _METADATA_ORDER.index(self) if self in _METADATA_ORDER else -1

    def reached(self, target: "MetadataPhase") -> bool:
        return self is not MetadataPhase.UNKNOWN and self.rank >= target.rank


_METADATA_ORDER = (MetadataPhase.ZOOKEEPER, MetadataPhase.PRE_KRAFT, MetadataPhase.KRAFT)


class Volume(BaseModel):
    """A single JBOD volume."""

    model_config = ConfigDict(populate_by_name=True)

    id: Any
    type: StorageType
    size: Optional[str] = None
    class_: Optional[str] = Field(default=None, alias="class")
    delete_claim: Optional[Any] = Field(default=None, alias="deleteClaim")


class StorageSpec(BaseModel):
    """Node pool storage: ephemeral, persistent-claim or jbod."""

    model_config = ConfigDict(populate_by_name=True)

    type: StorageType
    size: Optional[str] = None
    class_: Optional[str] = Field(default=None, alias="class")
    delete_claim: Optional[Any] = Field(default=None, alias="deleteClaim")
    id: Optional[Any] = None
    volumes: Optional[list[Volume]] = None

    @model_validator(mode="after")
    def _check_variant(self) -> "StorageSpec":
        if self.type == StorageType.JBOD and not self.volumes:
            raise ValueError("jbod storage requires at least one volume")
        if self.type == StorageType.PERSISTENT_CLAIM and not self.size:
            raise ValueError("persistent-claim storage requires a size")
        return self

    def to_manifest(self) -> dict[str, Any]:
        """Render the storage block, omitting unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ResourceSpec(BaseModel):
    """Common identity of a Strimzi resource bound to a Kafka cluster."""

    name: str
    namespace: str
    cluster: str
    annotations: dict[str, str] = Field(default_factory=dict)

    def metadata(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "labels": {CLUSTER_LABEL: self.cluster},
        }
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        return metadata


class NodePoolSpec(ResourceSpec):
    """KafkaNodePool specification."""

    replicas: int
    roles: list[NodeRole]
    storage: StorageSpec

    def to_manifest(self, api_version: str = DEFAULT_API_VERSION) -> dict[str, Any]:
        return {
            "apiVersion": api_version,
            "kind": ResourceKind.NODE_POOL.value,
            "metadata": self.metadata(),
            "spec": {
                "replicas": self.replicas,
                "roles": [role.value for role in self.roles],
                "storage": self.storage.to_manifest(),
            },
        }


class RebalanceSpec(ResourceSpec):
    """KafkaRebalance specification removing brokers."""

    mode: str = "remove-brokers"
    brokers: list[int]

    def to_manifest(self, api_version: str = DEFAULT_API_VERSION) -> dict[str, Any]:
        return {
            "apiVersion": api_version,
            "kind": ResourceKind.REBALANCE.value,
            "metadata": self.metadata(),
            "spec": {"mode": self.mode, "brokers": list(self.brokers)},
        }


class PodReadiness(BaseModel):
    """Name and Ready condition of a pod."""

    name: str
    ready: bool = False
