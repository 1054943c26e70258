"""Primary ZooKeeper to KRaft migration workflow for one Kafka cluster."""

import logging
from enum import Enum
from typing import Any, Optional

from .config import MigrationOptions, Settings, get_settings
from .evacuation import PoolEvacuation
from .exceptions import (
    AlreadyMigrated,
    ApplyFailed,
    ClusterNotFound,
    ConfigIncomplete,
    PoolMismatch,
    StatusUnavailable,
)
from .mirror import mirror_replicas, mirror_storage, storage_from_sizes
from .models import (
    CLUSTER_LABEL,
    KRAFT_ANNOTATION,
    NODE_POOLS_ANNOTATION,
    RESERVED_POOL_NAME,
    KRaftMode,
    MetadataPhase,
    MigrationPhase,
    NodePoolSpec,
    NodeRole,
    ResourceKind,
    StorageSpec,
    StorageType,
)
from .poller import Poller, reached
from .resources import ResourceAccessor, is_absent, lookup
from .status import (
    kraft_mode,
    metadata_phase,
    migration_phase,
    raw_status_fields,
    wait_for_pool_pods,
)

logger = logging.getLogger(__name__)

LEGACY_REPLICAS = ("spec", "kafka", "replicas")
LEGACY_STORAGE = ("spec", "kafka", "storage")
ZOOKEEPER = ("spec", "zookeeper")
ZOOKEEPER_REPLICAS = ("spec", "zookeeper", "replicas")
ZOOKEEPER_STORAGE = ("spec", "zookeeper", "storage")
DEPRECATED_CONFIG_KEYS = ("log.message.format.version", "inter.broker.protocol.version")

MIGRATION_TARGETS = (
    MigrationPhase.KRAFT_MIGRATION,
    MigrationPhase.KRAFT_DUAL_WRITING,
    MigrationPhase.KRAFT_POST_MIGRATION,
)


class MigrationOutcome(str, Enum):
    """Result of a migration run."""

    COMPLETED = "completed"
    ALREADY_MIGRATED = "already_migrated"


class MigrationController:
    """
    Drives one Kafka cluster from ZooKeeper to KRaft metadata.

    Sequence:
    1. Check that the namespace and the Kafka cluster exist
    2. Move the brokers to node pools (evacuating a foreign 'kafka' pool first)
    3. Annotate strimzi.io/kraft=migration and create the controller pool
    4. Wait for the migration phases in order
    5. Annotate strimzi.io/kraft=enabled, wait for KRaft, remove ZooKeeper config

    Every step re-reads the cluster and skips what is already applied, so an
    interrupted run can be started again.
    """

    def __init__(
        self,
        accessor: ResourceAccessor,
        options: MigrationOptions,
        settings: Optional[Settings] = None,
        poller: Optional[Poller] = None,
    ):
        """
        Initialize migration controller.

        Args:
            accessor: Resource accessor bound to the cluster namespace
            options: Per-run migration options
            settings: Timeouts and poll intervals (cached settings when omitted)
            poller: Polling primitive (real time when omitted)
        """
        self.accessor = accessor
        self.options = options
        self.settings = settings or get_settings()
        self.poller = poller or Poller(self.settings.poll_interval_seconds)
        self.evacuation = PoolEvacuation(accessor, self.settings, self.poller)

    @property
    def cluster_name(self) -> str:
        return self.options.cluster_name

    def run(self) -> MigrationOutcome:
        """
        Run the whole migration.

        Returns:
            COMPLETED, or ALREADY_MIGRATED when the cluster already runs KRaft

        Raises:
            MigrationError: On the first unrecoverable failure
        """
        logger.info(
            f"🚀 Starting KRaft migration for Kafka cluster '{self.cluster_name}' "
            f"in namespace '{self.accessor.namespace}'"
        )

        self.check_cluster()
        try:
            self.check_kraft_mode()
        except AlreadyMigrated as e:
            logger.info(f"✓ {e}")
            return MigrationOutcome.ALREADY_MIGRATED

        if self.options.skip_precondition_checks:
            logger.warning("Skipping node pool prerequisite checks (--skip-prereq-check)")
        else:
            self.ensure_pooled()

        self.enable_migration()
        self.ensure_controller_pool()
        self.monitor_migration()
        self.enable_kraft()
        self.verify_and_cleanup()

        logger.info(f"✓ Kafka cluster '{self.cluster_name}' has been migrated to KRaft")
        return MigrationOutcome.COMPLETED

    def _kafka(self) -> dict[str, Any]:
        kafka = self.accessor.get(ResourceKind.KAFKA, self.cluster_name)
        if kafka is None:
            raise ClusterNotFound(
                f"Kafka cluster '{self.cluster_name}' not found in namespace "
                f"'{self.accessor.namespace}'"
            )
        return kafka

    def check_cluster(self) -> None:
        """Raise ClusterNotFound unless the namespace and Kafka cluster exist."""
        if not self.accessor.namespace_exists():
            raise ClusterNotFound(f"Namespace '{self.accessor.namespace}' does not exist")
        self._kafka()
        logger.info(f"✓ Found Kafka cluster '{self.cluster_name}'")

    def check_kraft_mode(self) -> KRaftMode:
        """
        Read the strimzi.io/kraft annotation.

        Raises:
            AlreadyMigrated: If the annotation is already 'enabled'
        """
        mode = kraft_mode(self._kafka())
        if mode is KRaftMode.ENABLED:
            raise AlreadyMigrated(
                f"Kafka cluster '{self.cluster_name}' is already running in KRaft mode"
            )
        if mode is KRaftMode.MIGRATION:
            logger.info("Migration was already started, resuming from the current state")
        return mode

    # Node pools

    def _cluster_pools(self) -> list[dict[str, Any]]:
        return self.accessor.list(ResourceKind.NODE_POOL, {CLUSTER_LABEL: self.cluster_name})

    def _broker_pools(self) -> list[dict[str, Any]]:
        return [
            pool
            for pool in self._cluster_pools()
            if NodeRole.BROKER.value in (lookup(pool, ("spec", "roles")) or [])
        ]

    def reserved_pool_owner(self) -> Optional[str]:
        """
        Cluster label of the 'kafka' node pool.

        Returns:
            The owning cluster, or None if there is no such pool

        Raises:
            PoolMismatch: If the pool exists without a strimzi.io/cluster label
        """
        pool = self.accessor.get(ResourceKind.NODE_POOL, RESERVED_POOL_NAME)
        if pool is None:
            return None
        owner = lookup(pool, ("metadata", "labels", CLUSTER_LABEL))
        if owner is None:
            raise PoolMismatch(
                f"Node pool '{RESERVED_POOL_NAME}' exists but has no {CLUSTER_LABEL} label; "
                "refusing to take it over"
            )
        return owner

    def ensure_pooled(self) -> None:
        """
        Make sure the brokers of the cluster are managed by node pools.

        Node pool annotation and legacy broker fields are only touched once a
        broker-role pool of the cluster exists.

        Raises:
            ConfigIncomplete: If there is no broker pool and no legacy broker replicas
        """
        brokers = self._broker_pools()
        if brokers:
            names = [pool["metadata"]["name"] for pool in brokers]
            logger.info(f"✓ Kafka cluster '{self.cluster_name}' already uses broker node pools: {names}")
            self._enable_node_pools()
            self._remove_legacy_broker_fields()
            return

        if is_absent(self.accessor.get_field(ResourceKind.KAFKA, self.cluster_name, LEGACY_REPLICAS)):
            raise ConfigIncomplete(
                "spec.kafka.replicas",
                f"Kafka cluster '{self.cluster_name}' has no broker node pool and no "
                "spec.kafka.replicas to convert",
            )
        self.adopt_broker_pool()

    def adopt_broker_pool(self) -> NodePoolSpec:
        """
        Convert the legacy broker spec into the 'kafka' node pool.

        Returns:
            The applied broker pool

        Raises:
            PoolMismatch: If the stored pool differs from the legacy configuration
        """
        owner = self.reserved_pool_owner()
        if owner and owner != self.cluster_name:
            logger.warning(
                f"Node pool '{RESERVED_POOL_NAME}' is owned by Kafka instance '{owner}', "
                "moving it out of the way first"
            )
            result = self.evacuation.run(owner)
            logger.info(f"✓ Node pool of Kafka instance '{owner}' now runs as '{result.new_pool}'")

        kafka = self._kafka()
        pool = NodePoolSpec(
            name=RESERVED_POOL_NAME,
            namespace=self.accessor.namespace,
            cluster=self.cluster_name,
            replicas=mirror_replicas(lookup(kafka, LEGACY_REPLICAS), "spec.kafka.replicas"),
            roles=[NodeRole.BROKER],
            storage=mirror_storage(lookup(kafka, LEGACY_STORAGE), "spec.kafka.storage"),
        )

        logger.info(f"Creating broker node pool '{pool.name}' for Kafka cluster '{pool.cluster}'...")
        self.accessor.apply(pool.to_manifest(self.accessor.api_version(ResourceKind.NODE_POOL)))
        self._verify_pool_matches(pool)
        logger.info(f"✓ Broker node pool '{pool.name}' created")

        wait_for_pool_pods(self.accessor, self.poller, pool, self.settings.pod_ready_timeout_seconds)
        logger.info(f"✓ All {pool.replicas} broker pods of node pool '{pool.name}' are ready")

        self._enable_node_pools()
        self._remove_legacy_broker_fields()
        return pool

    def _verify_pool_matches(self, expected: NodePoolSpec) -> None:
        stored = self.accessor.get(ResourceKind.NODE_POOL, expected.name)
        if stored is None:
            raise PoolMismatch(f"Node pool '{expected.name}' not found after creation")

        problems = []
        replicas = lookup(stored, ("spec", "replicas"))
        if replicas != expected.replicas:
            problems.append(f"replicas {replicas} != {expected.replicas}")

        storage = lookup(stored, ("spec", "storage")) or {}
        if storage.get("type") != expected.storage.type.value:
            problems.append(f"storage type {storage.get('type')} != {expected.storage.type.value}")
        elif expected.storage.type == StorageType.JBOD:
            count = len(storage.get("volumes") or [])
            if count != len(expected.storage.volumes):
                problems.append(f"volume count {count} != {len(expected.storage.volumes)}")
        elif storage.get("size") != expected.storage.size:
            problems.append(f"storage size {storage.get('size')} != {expected.storage.size}")

        if problems:
            raise PoolMismatch(
                f"Node pool '{expected.name}' does not match the Kafka configuration: "
                + "; ".join(problems)
            )

    def _enable_node_pools(self) -> None:
        annotations = self.accessor.get_field(
            ResourceKind.KAFKA, self.cluster_name, ("metadata", "annotations")
        ) or {}
        if annotations.get(NODE_POOLS_ANNOTATION) == "enabled":
            return
        self.accessor.annotate(
            ResourceKind.KAFKA, self.cluster_name, NODE_POOLS_ANNOTATION, "enabled"
        )
        logger.info(f"✓ Node pools enabled for Kafka cluster '{self.cluster_name}'")

    def _remove_legacy_broker_fields(self) -> None:
        for path in (LEGACY_REPLICAS, LEGACY_STORAGE):
            try:
                self._remove_field(path)
            except ApplyFailed as e:
                logger.warning(f"{e}; the operator ignores it once node pools are enabled")

    def _remove_field(self, path) -> bool:
        """
        Remove a field from the Kafka resource if it is set.

        Returns:
            True if removed, False if it was already absent

        Raises:
            ApplyFailed: If the patch is rejected
        """
        dotted = ".".join(str(segment) for segment in path)
        if self.accessor.get_field(ResourceKind.KAFKA, self.cluster_name, path) is None:
            logger.info(f"{dotted} already absent")
            return False
        self.accessor.patch_remove(ResourceKind.KAFKA, self.cluster_name, path)
        logger.info(f"✓ Removed {dotted}")
        return True

    # Controller pool

    def enable_migration(self) -> None:
        """Annotate strimzi.io/kraft=migration unless the migration was already started."""
        mode = kraft_mode(self._kafka())
        if mode is not KRaftMode.UNSET:
            logger.info(f"{KRAFT_ANNOTATION} is already '{mode.value}'")
            return

        logger.info(f"Enabling KRaft migration for Kafka cluster '{self.cluster_name}'...")
        self.accessor.annotate(
            ResourceKind.KAFKA, self.cluster_name, KRAFT_ANNOTATION, KRaftMode.MIGRATION.value
        )
        logger.info(f"✓ {KRAFT_ANNOTATION}={KRaftMode.MIGRATION.value} set")
        self.poller.sleep(self.settings.reconcile_settle_seconds)

    def ensure_controller_pool(self) -> Optional[NodePoolSpec]:
        """
        Create the controller node pool and wait for its pods.

        Returns:
            The applied pool, or None if a pool with that name already existed
        """
        name = self.options.pool_name
        if self.accessor.get(ResourceKind.NODE_POOL, name) is not None:
            logger.info(f"Controller node pool '{name}' already exists, reusing it")
            return None

        pool = self.plan_controller_pool()
        logger.info(
            f"Creating controller node pool '{pool.name}' with {pool.replicas} replicas "
            f"and {pool.storage.type.value} storage..."
        )
        self.accessor.apply(pool.to_manifest(self.accessor.api_version(ResourceKind.NODE_POOL)))
        logger.info(f"✓ Controller node pool '{pool.name}' created")

        wait_for_pool_pods(self.accessor, self.poller, pool, self.settings.pod_ready_timeout_seconds)
        logger.info(f"✓ All {pool.replicas} controller pods of node pool '{pool.name}' are ready")
        return pool

    def plan_controller_pool(self) -> NodePoolSpec:
        """
        Derive the controller pool from options, broker storage and ZooKeeper.

        Raises:
            ConfigIncomplete: If replicas or storage cannot be derived
        """
        kafka = self._kafka()
        if self.options.controller_replicas:
            replicas = self.options.controller_replicas
        else:
            replicas = mirror_replicas(lookup(kafka, ZOOKEEPER_REPLICAS), "spec.zookeeper.replicas")

        broker_storage, origin = self._broker_storage_reference(kafka)
        storage = self._plan_controller_storage(
            broker_storage, origin, lookup(kafka, ZOOKEEPER_STORAGE) or {}
        )
        return NodePoolSpec(
            name=self.options.pool_name,
            namespace=self.accessor.namespace,
            cluster=self.cluster_name,
            replicas=replicas,
            roles=[NodeRole.CONTROLLER],
            storage=storage,
        )

    def _broker_storage_reference(self, kafka: dict[str, Any]):
        pools = self._broker_pools()
        pools.sort(key=lambda pool: pool["metadata"]["name"] != RESERVED_POOL_NAME)
        for pool in pools:
            storage = lookup(pool, ("spec", "storage"))
            if storage:
                return storage, f"KafkaNodePool {pool['metadata']['name']} spec.storage"

        legacy = lookup(kafka, LEGACY_STORAGE)
        if legacy:
            return legacy, "spec.kafka.storage"
        return {}, "spec.kafka.storage"

    def _plan_controller_storage(
        self, broker: dict[str, Any], origin: str, zookeeper: dict[str, Any]
    ) -> StorageSpec:
        options = self.options
        sizes = [size for size in options.controller_storage_sizes if size.strip()]

        broker_type = None
        if not is_absent(broker.get("type")):
            try:
                broker_type = StorageType(broker["type"])
            except ValueError:
                logger.warning(f"Ignoring unsupported broker storage type {broker['type']!r}")

        if options.controller_storage_type:
            storage_type = options.controller_storage_type
        elif options.is_multi_volume_sizes:
            storage_type = StorageType.JBOD
        else:
            storage_type = broker_type or StorageType.PERSISTENT_CLAIM

        if storage_type == StorageType.JBOD:
            if sizes:
                storage_class = (
                    options.controller_storage_class
                    or lookup(broker, ("volumes", 0, "class"))
                    or lookup(zookeeper, ("class",))
                )
                return storage_from_sizes(sizes, storage_class)
            if broker_type == StorageType.JBOD:
                return mirror_storage(broker, origin)
            raise ConfigIncomplete(
                "controller-storage-sizes",
                "JBOD controller storage needs --controller-storage-sizes "
                "or JBOD broker storage to copy",
            )

        if storage_type == StorageType.EPHEMERAL:
            if sizes:
                logger.warning("Ignoring --controller-storage-sizes for ephemeral storage")
            return StorageSpec(type=StorageType.EPHEMERAL)

        size = sizes[0] if sizes else lookup(broker, ("size",))
        if is_absent(size):
            raise ConfigIncomplete(
                "controller-storage-sizes",
                f"No controller storage size given and none found in {origin}.size",
            )

        fields: dict[str, Any] = {"type": StorageType.PERSISTENT_CLAIM, "size": size}
        storage_class = (
            options.controller_storage_class
            or lookup(broker, ("class",))
            or lookup(zookeeper, ("class",))
        )
        if storage_class:
            fields["class"] = storage_class
        for key in ("deleteClaim", "id"):
            value = lookup(broker, (key,))
            if value is None:
                value = lookup(zookeeper, (key,))
            if value is not None:
                fields[key] = value
        return StorageSpec.model_validate(fields)

    # Migration phases

    def _migration_progress(self) -> MigrationPhase:
        kafka = self._kafka()
        phase = migration_phase(kafka)
        if phase is MigrationPhase.UNKNOWN and metadata_phase(kafka).reached(
            MetadataPhase.PRE_KRAFT
        ):
            # Metadata already moved on, every migration phase is behind us.
            return MigrationPhase.KRAFT_POST_MIGRATION
        return phase

    def monitor_migration(self) -> MigrationPhase:
        """
        Wait for each migration phase not yet reached.

        Raises:
            StatusUnavailable: If the cluster does not publish a readable state
            DeadlineExceeded: If a phase is not reached within the wait timeout
        """
        phase = self._migration_progress()
        if phase is MigrationPhase.UNKNOWN:
            logger.warning(
                "Migration state is not readable yet, checking again in "
                f"{self.settings.reconcile_settle_seconds:g}s"
            )
            self.poller.sleep(self.settings.reconcile_settle_seconds)
            phase = self._migration_progress()
            if phase is MigrationPhase.UNKNOWN:
                kafka = self._kafka()
                raise StatusUnavailable(
                    f"Could not determine the migration state of Kafka cluster "
                    f"'{self.cluster_name}' (status fields: {raw_status_fields(kafka)})",
                    raw_status_fields(kafka),
                )

        logger.info(f"Current migration state: {phase.value}")

        def progress(current: MigrationPhase) -> None:
            logger.info(f"Migration state: {current.value}")

        for target in MIGRATION_TARGETS:
            if phase.reached(target):
                logger.info(f"✓ Migration state {target.value} already reached")
                continue
            phase = self.poller.wait_for(
                self._migration_progress,
                reached(target),
                self.options.wait_timeout,
                f"migration state {target.value}",
                on_pending=progress,
            )
            logger.info(f"✓ Migration state {target.value} reached")
        return phase

    def enable_kraft(self) -> None:
        """Annotate strimzi.io/kraft=enabled unless already set."""
        if kraft_mode(self._kafka()) is KRaftMode.ENABLED:
            logger.info(f"{KRAFT_ANNOTATION} is already '{KRaftMode.ENABLED.value}'")
            return
        logger.info(f"Finalizing migration for Kafka cluster '{self.cluster_name}'...")
        self.accessor.annotate(
            ResourceKind.KAFKA, self.cluster_name, KRAFT_ANNOTATION, KRaftMode.ENABLED.value
        )
        logger.info(f"✓ {KRAFT_ANNOTATION}={KRaftMode.ENABLED.value} set")

    def verify_and_cleanup(self) -> None:
        """
        Wait for KRaft metadata and remove the ZooKeeper configuration.

        Raises:
            StatusUnavailable: If the KRaft annotation is not 'enabled'
            DeadlineExceeded: If metadata does not reach KRaft in time
            ApplyFailed: If spec.zookeeper could not be removed
        """
        mode = kraft_mode(self._kafka())
        if mode is not KRaftMode.ENABLED:
            raise StatusUnavailable(
                f"Expected {KRAFT_ANNOTATION}=enabled on Kafka cluster '{self.cluster_name}', "
                f"found '{mode.value or 'not set'}'",
                {KRAFT_ANNOTATION: mode.value},
            )

        def progress(phase: MetadataPhase) -> None:
            if phase is MetadataPhase.PRE_KRAFT:
                logger.info("Metadata state is PreKRaft, waiting for controllers to take over...")
            else:
                logger.info(f"Metadata state: {phase.value}")

        self.poller.wait_for(
            lambda: metadata_phase(self._kafka()),
            reached(MetadataPhase.KRAFT),
            self.options.wait_timeout,
            f"metadata state {MetadataPhase.KRAFT.value}",
            on_pending=progress,
        )
        logger.info(f"✓ Kafka cluster '{self.cluster_name}' metadata is now in KRaft")

        self.cleanup_zookeeper_config()

    def cleanup_zookeeper_config(self) -> None:
        """
        Remove spec.zookeeper and the deprecated broker config keys.

        Each removal is attempted independently.

        Raises:
            ApplyFailed: If spec.zookeeper could not be removed
        """
        logger.info("Cleaning up ZooKeeper configuration...")
        failure = None
        try:
            self._remove_field(ZOOKEEPER)
        except ApplyFailed as e:
            logger.error(f"✗ {e}")
            failure = e

        for key in DEPRECATED_CONFIG_KEYS:
            try:
                self._remove_field(("spec", "kafka", "config", key))
            except ApplyFailed as e:
                logger.warning(f"Could not remove deprecated config {key}: {e}")

        if failure:
            raise failure
        logger.info("✓ ZooKeeper configuration removed")
