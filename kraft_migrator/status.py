"""Readers for Kafka cluster status and pod readiness."""

import logging
import re
from typing import Any, Optional

from .models import (
    CLUSTER_LABEL,
    KIND_LABEL,
    KRAFT_ANNOTATION,
    NAME_LABEL,
    KRaftMode,
    MetadataPhase,
    MigrationPhase,
    NodePoolSpec,
    PodReadiness,
    ResourceKind,
)
from .poller import Poller, at_least
from .resources import ResourceAccessor, lookup

logger = logging.getLogger(__name__)

# Schema variants, in priority order. Newer operators publish a scalar
# kafkaMetadataState, older ones nest it or use kafkaMigrationStatus.
METADATA_STATE_PATHS = (
    ("status", "kafkaMetadataState"),
    ("status", "kafkaMetadataState", "state"),
)
MIGRATION_STATE_PATHS = METADATA_STATE_PATHS + (("status", "kafkaMigrationStatus", "state"),)


def _first_scalar(resource: Optional[dict[str, Any]], paths) -> Optional[str]:
    values = []
    for path in paths:
        value = lookup(resource, path)
        if isinstance(value, (str, int, float)):
            values.append(str(value).strip())

    if not values:
        return None
    if len(set(values)) > 1:
        logger.debug(f"Status fields disagree, using the first of {values}")
    return values[0]


def migration_phase(resource: Optional[dict[str, Any]]) -> MigrationPhase:
    """Migration progress of a Kafka resource; UNKNOWN when not published."""
    return MigrationPhase.parse(_first_scalar(resource, MIGRATION_STATE_PATHS))


def metadata_phase(resource: Optional[dict[str, Any]]) -> MetadataPhase:
    """Metadata location of a Kafka resource; UNKNOWN when not published."""
    return MetadataPhase.parse(_first_scalar(resource, METADATA_STATE_PATHS))


def kraft_mode(resource: Optional[dict[str, Any]]) -> KRaftMode:
    return KRaftMode.parse(lookup(resource, ("metadata", "annotations", KRAFT_ANNOTATION)))


def raw_status_fields(resource: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Raw status values used for diagnosing an unreadable state."""
    return {
        "kafkaMetadataState": lookup(resource, ("status", "kafkaMetadataState")),
        "kafkaMigrationStatus": lookup(resource, ("status", "kafkaMigrationStatus")),
    }


def kafka_pod_labels(cluster: str) -> dict[str, str]:
    return {CLUSTER_LABEL: cluster, KIND_LABEL: ResourceKind.KAFKA.value}


def pool_pod_pattern(cluster: str, pool: str) -> re.Pattern:
    """
    Pods of a node pool are named <cluster>-<pool>-<n>.

    An exact match keeps pools apart whose names share a prefix, e.g. pool
    'kafka' of cluster 'a' (a-kafka-0) and pool 'kafka-a' (a-kafka-a-0).
    """
    return re.compile(rf"^{re.escape(cluster)}-{re.escape(pool)}-\d+$")


def pool_pods(accessor: ResourceAccessor, cluster: str, pool: str) -> list[PodReadiness]:
    pattern = pool_pod_pattern(cluster, pool)
    return [
        pod for pod in accessor.pod_readiness(kafka_pod_labels(cluster)) if pattern.match(pod.name)
    ]


def cruise_control_pods(accessor: ResourceAccessor, cluster: str) -> list[PodReadiness]:
    labels = kafka_pod_labels(cluster)
    labels[NAME_LABEL] = f"{cluster}-cruise-control"
    return accessor.pod_readiness(labels)


def wait_for_pool_pods(
    accessor: ResourceAccessor, poller: Poller, pool: NodePoolSpec, timeout: float
) -> int:
    """
    Block until `pool.replicas` pods of the node pool report Ready.

    Returns:
        Number of ready pods observed

    Raises:
        DeadlineExceeded: With the last ready count
    """

    def ready_count() -> int:
        return sum(pod.ready for pod in pool_pods(accessor, pool.cluster, pool.name))

    def progress(ready: int) -> None:
        logger.info(f"Pods of node pool '{pool.name}' ready: {ready}/{pool.replicas}")

    return poller.wait_for(
        ready_count,
        at_least(pool.replicas),
        timeout,
        f"{pool.replicas} ready pods of node pool '{pool.name}'",
        on_pending=progress,
    )
