"""Free the reserved 'kafka' pool name held by another Kafka cluster."""

import logging
from typing import Optional

from pydantic import BaseModel

from .config import Settings
from .exceptions import DeadlineExceeded, MissingNodeIds
from .mirror import mirror_replicas, mirror_storage
from .models import (
    REBALANCE_ANNOTATION,
    RESERVED_POOL_NAME,
    KRaftMode,
    NodePoolSpec,
    NodeRole,
    RebalanceSpec,
    ResourceKind,
)
from .poller import Poller, at_least, equals
from .resources import ResourceAccessor, lookup
from .status import cruise_control_pods, kraft_mode, wait_for_pool_pods

logger = logging.getLogger(__name__)

APPROVED_CONDITIONS = ("Rebalancing", "Ready")


class EvacuationResult(BaseModel):
    """Outcome of a reserved pool evacuation."""

    owner: str
    new_pool: str
    rebalance: str
    node_ids: list[int]
    rebalance_completed: bool
    old_pool_removed: bool


class PoolEvacuation:
    """
    Moves the reserved broker pool of a neighbouring cluster to a new name.

    Sequence:
    1. Make sure Cruise Control runs for the owning cluster
    2. Create a twin pool 'kafka-<owner>' with the same replicas and storage
    3. Rebalance the old pool's brokers away with a remove-brokers KafkaRebalance
    4. Delete the old 'kafka' pool
    """

    def __init__(self, accessor: ResourceAccessor, settings: Settings, poller: Poller):
        """
        Initialize pool evacuation.

        Args:
            accessor: Resource accessor for the namespace
            settings: Timeouts and poll intervals
            poller: Polling primitive
        """
        self.accessor = accessor
        self.settings = settings
        self.poller = poller

    def run(self, owner: str) -> EvacuationResult:
        """
        Evacuate the reserved pool owned by `owner`.

        Args:
            owner: Kafka cluster currently labelled on the 'kafka' pool

        Returns:
            EvacuationResult

        Raises:
            MissingNodeIds: If the old pool reports no node ids
            ConfigIncomplete: If the old pool's replicas or storage are missing
            DeadlineExceeded: If pods or the rebalance proposal are not ready in time
            ApplyFailed: If any write is rejected
        """
        new_pool = f"{RESERVED_POOL_NAME}-{owner}"
        rebalance_name = f"evacuate-old-pool-{owner}"
        logger.info(f"Migrating existing '{RESERVED_POOL_NAME}' node pool from Kafka instance '{owner}'...")

        self._check_owner_migrated(owner)
        self.ensure_cruise_control(owner)

        node_ids = self._node_ids()
        logger.info(f"Node IDs to migrate: {node_ids}")

        pool = self.accessor.get(ResourceKind.NODE_POOL, RESERVED_POOL_NAME)
        twin = NodePoolSpec(
            name=new_pool,
            namespace=self.accessor.namespace,
            cluster=owner,
            replicas=mirror_replicas(lookup(pool, ("spec", "replicas")), "spec.replicas"),
            roles=[NodeRole.BROKER],
            storage=mirror_storage(lookup(pool, ("spec", "storage")), "spec.storage"),
        )
        self._create_twin_pool(twin)

        rebalance = RebalanceSpec(
            name=rebalance_name,
            namespace=self.accessor.namespace,
            cluster=owner,
            brokers=node_ids,
        )
        completed = self._rebalance(rebalance)

        removed = self._delete_old_pool()
        self._verify(new_pool)

        return EvacuationResult(
            owner=owner,
            new_pool=new_pool,
            rebalance=rebalance_name,
            node_ids=node_ids,
            rebalance_completed=completed,
            old_pool_removed=removed,
        )

    def _check_owner_migrated(self, owner: str) -> None:
        mode = kraft_mode(self.accessor.get(ResourceKind.KAFKA, owner))
        if mode is KRaftMode.ENABLED:
            logger.info(f"Verified: Kafka instance '{owner}' has been migrated to KRaft")
        else:
            logger.warning(
                f"Kafka instance '{owner}' does not appear to be fully migrated to KRaft "
                f"(status: {mode.value or 'not set'})"
            )
            logger.warning(
                "Continuing anyway, but ensure this Kafka instance has completed KRaft migration"
            )

    def ensure_cruise_control(self, owner: str) -> None:
        """Enable Cruise Control on `owner` if needed and wait for its pod."""
        enabled = lookup(
            self.accessor.get(ResourceKind.KAFKA, owner), ("spec", "cruiseControl")
        )

        def ready_count() -> int:
            return sum(pod.ready for pod in cruise_control_pods(self.accessor, owner))

        description = f"Cruise Control pods of Kafka instance '{owner}'"
        if enabled is not None:
            logger.info(f"Cruise Control is already enabled for Kafka instance '{owner}'")
            try:
                self.poller.wait_for(
                    ready_count,
                    at_least(1),
                    self.settings.cruise_control_verify_timeout_seconds,
                    description,
                )
                logger.info(f"✓ Cruise Control pods are ready for Kafka instance '{owner}'")
            except DeadlineExceeded as e:
                logger.warning(f"{e}; continuing")
            return

        logger.info(f"Enabling Cruise Control for Kafka instance '{owner}'...")
        self.accessor.patch_add(ResourceKind.KAFKA, owner, ("spec", "cruiseControl"), {})
        logger.info(f"✓ Cruise Control enabled for Kafka instance '{owner}'")

        self.poller.wait_for(
            ready_count,
            at_least(1),
            self.settings.cruise_control_timeout_seconds,
            description,
        )
        logger.info(f"✓ Cruise Control pods are ready for Kafka instance '{owner}'")

    def _node_ids(self) -> list[int]:
        node_ids = self.accessor.get_field(
            ResourceKind.NODE_POOL, RESERVED_POOL_NAME, ("status", "nodeIds")
        )
        if not node_ids:
            raise MissingNodeIds(RESERVED_POOL_NAME)
        return [int(node_id) for node_id in node_ids]

    def _create_twin_pool(self, twin: NodePoolSpec) -> None:
        logger.info(f"Creating target node pool '{twin.name}' for Kafka instance '{twin.cluster}'...")
        self.accessor.apply(twin.to_manifest(self.accessor.api_version(ResourceKind.NODE_POOL)))
        logger.info(f"✓ New node pool '{twin.name}' created for Kafka instance '{twin.cluster}'")

        wait_for_pool_pods(
            self.accessor, self.poller, twin, self.settings.pod_ready_timeout_seconds
        )
        logger.info(
            f"✓ All {twin.replicas} new broker pods from node pool '{twin.name}' are ready "
            f"({twin.replicas * 2} brokers in total until the old pool is removed)"
        )

    def _condition(self, name: str, condition: str, field: str = "status") -> Optional[str]:
        resource = self.accessor.get(ResourceKind.REBALANCE, name)
        for entry in lookup(resource, ("status", "conditions")) or []:
            if entry.get("type") == condition:
                return entry.get(field)
        return None

    def _wait_for_condition(self, name: str, condition: str, timeout: float, interval: float):
        def progress(_status) -> None:
            message = self._condition(name, condition, "message")
            if message:
                logger.info(f"KafkaRebalance '{name}' {condition}: {message}")

        return self.poller.wait_for(
            lambda: self._condition(name, condition),
            equals("True"),
            timeout,
            f"KafkaRebalance '{name}' condition {condition}=True",
            interval=interval,
            on_pending=progress,
        )

    def _already_approved(self, name: str) -> bool:
        """True if an earlier run already approved the rebalance."""
        existing = self.accessor.get(ResourceKind.REBALANCE, name)
        if existing is None:
            return False
        if lookup(existing, ("metadata", "annotations", REBALANCE_ANNOTATION)) == "approve":
            return True
        # The operator drops the annotation once it starts moving data.
        return any(
            entry.get("type") in APPROVED_CONDITIONS and entry.get("status") == "True"
            for entry in lookup(existing, ("status", "conditions")) or []
        )

    def _rebalance(self, rebalance: RebalanceSpec) -> bool:
        if self._already_approved(rebalance.name):
            logger.info(
                f"KafkaRebalance '{rebalance.name}' was already approved, "
                "waiting for it to complete"
            )
            return self._wait_for_rebalance(rebalance)

        logger.info(
            f"Creating KafkaRebalance resource '{rebalance.name}' "
            f"for Kafka instance '{rebalance.cluster}'..."
        )
        self.accessor.apply(rebalance.to_manifest(self.accessor.api_version(ResourceKind.REBALANCE)))
        logger.info(f"✓ KafkaRebalance resource '{rebalance.name}' created")

        self._wait_for_condition(
            rebalance.name,
            "ProposalReady",
            self.settings.proposal_timeout_seconds,
            self.settings.poll_interval_seconds,
        )
        logger.info(f"✓ KafkaRebalance proposal is ready for Kafka instance '{rebalance.cluster}'")

        logger.info(f"Approving KafkaRebalance proposal '{rebalance.name}'...")
        self.accessor.annotate(
            ResourceKind.REBALANCE, rebalance.name, REBALANCE_ANNOTATION, "approve"
        )
        logger.info(f"✓ KafkaRebalance proposal approved for Kafka instance '{rebalance.cluster}'")
        return self._wait_for_rebalance(rebalance)

    def _wait_for_rebalance(self, rebalance: RebalanceSpec) -> bool:
        try:
            self._wait_for_condition(
                rebalance.name,
                "Ready",
                self.settings.rebalance_timeout_seconds,
                self.settings.rebalance_poll_interval_seconds,
            )
        except DeadlineExceeded as e:
            # Data movement may outlast the wait; the old pool is removed anyway.
            logger.warning(f"KafkaRebalance did not complete in time, but continuing: {e}")
            return False

        logger.info(f"✓ KafkaRebalance completed successfully for Kafka instance '{rebalance.cluster}'")
        return True

    def _delete_old_pool(self) -> bool:
        logger.info(f"Deleting old '{RESERVED_POOL_NAME}' node pool...")
        removed = self.accessor.delete(ResourceKind.NODE_POOL, RESERVED_POOL_NAME)
        self.poller.wait_for(
            lambda: self.accessor.get(ResourceKind.NODE_POOL, RESERVED_POOL_NAME) is None,
            equals(True),
            self.settings.pool_delete_timeout_seconds,
            f"deletion of node pool '{RESERVED_POOL_NAME}'",
        )
        logger.info(f"✓ Old '{RESERVED_POOL_NAME}' node pool deleted")
        return removed

    def _verify(self, new_pool: str) -> None:
        logger.info("Verifying node pools...")
        old_exists = self.accessor.get(ResourceKind.NODE_POOL, RESERVED_POOL_NAME) is not None
        new_exists = self.accessor.get(ResourceKind.NODE_POOL, new_pool) is not None
        if not old_exists and new_exists:
            logger.info(
                f"✓ Verification successful: '{RESERVED_POOL_NAME}' pool deleted, "
                f"'{new_pool}' exists"
            )
        else:
            logger.warning(
                f"Verification: {RESERVED_POOL_NAME} pool exists={old_exists}, "
                f"{new_pool} exists={new_exists}"
            )
