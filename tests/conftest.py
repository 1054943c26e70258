"""Pytest configuration and fixtures for KRaft migrator tests."""

import copy
from typing import Any, List, Optional

import pytest
from unittest.mock import MagicMock
from kubernetes import client

from kraft_migrator.config import MigrationOptions, Settings
from kraft_migrator.exceptions import ApplyFailed
from kraft_migrator.models import (
    CLUSTER_LABEL,
    DEFAULT_API_VERSION,
    KIND_LABEL,
    KRAFT_ANNOTATION,
    NAME_LABEL,
    REBALANCE_ANNOTATION,
    PodReadiness,
    ResourceKind,
)
from kraft_migrator.poller import Poller
from kraft_migrator.resources import json_pointer, lookup


@pytest.fixture
def mock_cluster_connection():
    """Mock cluster connection for testing."""
    mock_conn = MagicMock()
    mock_conn.core_v1 = MagicMock(spec=client.CoreV1Api)
    mock_conn.custom_objects = MagicMock(spec=client.CustomObjectsApi)
    mock_conn.apiextensions_v1 = MagicMock(spec=client.ApiextensionsV1Api)
    return mock_conn


@pytest.fixture
def no_retry_wait(monkeypatch):
    """Make tenacity retries on reads immediate."""
    from kraft_migrator.resources import ResourceAccessor

    monkeypatch.setattr(ResourceAccessor._read.retry, "sleep", lambda seconds: None)


class FakeClock:
    """Monotonic clock advanced only by sleeping."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def poller(clock):
    return Poller(interval=10, sleep=clock.sleep, clock=clock)


@pytest.fixture
def settings():
    """Settings with the default timeouts, independent of the environment."""
    return Settings(
        _env_file=None,
        kubeconfig_path=None,
        kube_context=None,
        node_pool_api_version=DEFAULT_API_VERSION,
    )


def _set_path(obj: dict, path, value) -> None:
    for key in path[:-1]:
        obj = obj.setdefault(key, {})
    obj[path[-1]] = value


def _remove_path(obj: dict, path) -> bool:
    for key in path[:-1]:
        obj = obj.get(key)
        if not isinstance(obj, dict):
            return False
    return obj.pop(path[-1], None) is not None


class FakeControlPlane:
    """
    In-memory stand-in for ResourceAccessor that also plays the operator.

    - applying a node pool starts Ready pods <cluster>-<pool>-<n> and assigns node ids
    - adding spec.cruiseControl starts a Ready cruise control pod
    - a KafkaRebalance gets ProposalReady on creation, which approval replaces
      with Ready (or Rebalancing while approve_completes is False)
    - strimzi.io/kraft=migration and =enabled queue status transitions that are
      published one per read of the Kafka resource
    """

    def __init__(self, namespace: str = "kafka"):
        self.namespace = namespace
        self.namespaces = {namespace}
        self.objects: dict[tuple[ResourceKind, str], dict[str, Any]] = {}
        self.pods: dict[str, dict[str, Any]] = {}
        self.writes: list[tuple] = []
        self.pending_states: dict[str, list[str]] = {}
        self.failing_removals: set[str] = set()
        self.start_pods = True
        self.approve_completes = True
        self._next_node_id = 0

    # Accessor interface

    def api_version(self, kind: ResourceKind) -> str:
        return DEFAULT_API_VERSION

    def namespace_exists(self) -> bool:
        return self.namespace in self.namespaces

    def get(self, kind: ResourceKind, name: str) -> Optional[dict[str, Any]]:
        obj = self.objects.get((kind, name))
        if obj is None:
            return None
        if kind is ResourceKind.KAFKA and self.pending_states.get(name):
            state = self.pending_states[name].pop(0)
            obj.setdefault("status", {})["kafkaMetadataState"] = state
        return copy.deepcopy(obj)

    def get_field(self, kind: ResourceKind, name: str, path):
        return lookup(self.get(kind, name), path)

    def list(self, kind: ResourceKind, labels: Optional[dict[str, str]] = None) -> list[dict]:
        items = []
        for (item_kind, _), obj in self.objects.items():
            if item_kind is not kind:
                continue
            obj_labels = obj["metadata"].get("labels", {})
            if all(obj_labels.get(k) == v for k, v in (labels or {}).items()):
                items.append(copy.deepcopy(obj))
        return items

    def pod_readiness(self, labels: dict[str, str]) -> List[PodReadiness]:
        return [
            PodReadiness(name=name, ready=pod["ready"])
            for name, pod in sorted(self.pods.items())
            if all(pod["labels"].get(k) == v for k, v in labels.items())
        ]

    def apply(self, manifest: dict[str, Any]) -> dict[str, Any]:
        kind = ResourceKind(manifest["kind"])
        name = manifest["metadata"]["name"]
        self.writes.append(("apply", kind, name))

        existing = self.objects.get((kind, name))
        obj = copy.deepcopy(manifest)
        if existing and "status" in existing:
            obj["status"] = existing["status"]
        self.objects[(kind, name)] = obj

        if kind is ResourceKind.NODE_POOL and existing is None:
            self._start_pool(obj)
        elif kind is ResourceKind.REBALANCE:
            obj["status"] = {
                "conditions": [
                    {"type": "ProposalReady", "status": "True", "message": "Proposal ready"}
                ]
            }
        return copy.deepcopy(obj)

    def annotate(self, kind: ResourceKind, name: str, key: str, value: str) -> None:
        self.writes.append(("annotate", kind, name, key, value))
        obj = self.objects[(kind, name)]
        obj["metadata"].setdefault("annotations", {})[key] = value

        if kind is ResourceKind.REBALANCE and key == REBALANCE_ANNOTATION:
            # The operator replaces ProposalReady once the proposal is approved.
            if self.approve_completes:
                condition = {"type": "Ready", "status": "True", "message": "Rebalance complete"}
            else:
                condition = {"type": "Rebalancing", "status": "True", "message": "Moving replicas"}
            obj["status"]["conditions"] = [condition]
        elif kind is ResourceKind.KAFKA and key == KRAFT_ANNOTATION:
            if value == "migration":
                self.pending_states[name] = [
                    "KRaftMigration",
                    "KRaftDualWriting",
                    "KRaftPostMigration",
                ]
            elif value == "enabled":
                self.pending_states[name] = ["PreKRaft", "KRaft"]

    def patch_add(self, kind: ResourceKind, name: str, path, value: Any) -> None:
        self.writes.append(("add", kind, name, json_pointer(path)))
        _set_path(self.objects[(kind, name)], list(path), copy.deepcopy(value))
        if kind is ResourceKind.KAFKA and tuple(path) == ("spec", "cruiseControl"):
            self.add_pod(name, f"{name}-cruise-control-0", name_label=f"{name}-cruise-control")

    def patch_remove(self, kind: ResourceKind, name: str, path) -> None:
        pointer = json_pointer(path)
        self.writes.append(("remove", kind, name, pointer))
        if pointer in self.failing_removals:
            raise ApplyFailed(f"remove {pointer} on", f"{kind.value} '{name}'", "Forbidden")
        _remove_path(self.objects[(kind, name)], list(path))

    def delete(self, kind: ResourceKind, name: str) -> bool:
        self.writes.append(("delete", kind, name))
        obj = self.objects.pop((kind, name), None)
        if obj is None:
            return False
        if kind is ResourceKind.NODE_POOL:
            cluster = obj["metadata"]["labels"][CLUSTER_LABEL]
            prefix = f"{cluster}-{name}-"
            for pod in [p for p in self.pods if p.startswith(prefix) and p[len(prefix):].isdigit()]:
                del self.pods[pod]
        return True

    # Scenario helpers

    def add_pod(self, cluster: str, pod_name: str, ready: bool = True, name_label: str = "") -> None:
        labels = {CLUSTER_LABEL: cluster, KIND_LABEL: "Kafka"}
        if name_label:
            labels[NAME_LABEL] = name_label
        self.pods[pod_name] = {"labels": labels, "ready": ready}

    def add_kafka(
        self,
        name: str,
        spec: dict[str, Any],
        annotations: Optional[dict[str, str]] = None,
        state: Optional[str] = "ZooKeeper",
    ) -> dict[str, Any]:
        obj = {
            "apiVersion": DEFAULT_API_VERSION,
            "kind": "Kafka",
            "metadata": {"name": name, "namespace": self.namespace, "annotations": dict(annotations or {})},
            "spec": copy.deepcopy(spec),
            "status": {"kafkaMetadataState": state} if state else {},
        }
        self.objects[(ResourceKind.KAFKA, name)] = obj
        return obj

    def add_pool(
        self,
        name: str,
        cluster: str,
        replicas: int,
        storage: dict[str, Any],
        roles=("broker",),
    ) -> dict[str, Any]:
        obj = {
            "apiVersion": DEFAULT_API_VERSION,
            "kind": "KafkaNodePool",
            "metadata": {"name": name, "namespace": self.namespace, "labels": {CLUSTER_LABEL: cluster}},
            "spec": {"replicas": replicas, "roles": list(roles), "storage": copy.deepcopy(storage)},
        }
        self.objects[(ResourceKind.NODE_POOL, name)] = obj
        self._start_pool(obj)
        return obj

    def add_rebalance(
        self,
        name: str,
        cluster: str,
        brokers: list,
        conditions: list,
        annotations: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        obj = {
            "apiVersion": DEFAULT_API_VERSION,
            "kind": "KafkaRebalance",
            "metadata": {
                "name": name,
                "namespace": self.namespace,
                "labels": {CLUSTER_LABEL: cluster},
                "annotations": dict(annotations or {}),
            },
            "spec": {"mode": "remove-brokers", "brokers": list(brokers)},
            "status": {"conditions": copy.deepcopy(conditions)},
        }
        self.objects[(ResourceKind.REBALANCE, name)] = obj
        return obj

    def pool(self, name: str) -> Optional[dict[str, Any]]:
        return self.objects.get((ResourceKind.NODE_POOL, name))

    def kafka(self, name: str) -> dict[str, Any]:
        return self.objects[(ResourceKind.KAFKA, name)]

    def written(self, action: str) -> List[tuple]:
        return [write for write in self.writes if write[0] == action]

    def _start_pool(self, obj: dict[str, Any]) -> None:
        name = obj["metadata"]["name"]
        cluster = obj["metadata"]["labels"][CLUSTER_LABEL]
        replicas = obj["spec"]["replicas"]
        node_ids = list(range(self._next_node_id, self._next_node_id + replicas))
        self._next_node_id += replicas
        obj["status"] = {"nodeIds": node_ids}
        for index in range(replicas):
            self.add_pod(cluster, f"{cluster}-{name}-{index}", ready=self.start_pods)


@pytest.fixture
def control_plane():
    return FakeControlPlane()


@pytest.fixture
def zookeeper_spec():
    """Legacy Kafka spec with ZooKeeper and no node pools."""
    return {
        "kafka": {
            "replicas": 3,
            "storage": {
                "type": "jbod",
                "volumes": [
                    {"id": 0, "type": "persistent-claim", "size": "100Gi", "class": "fast", "deleteClaim": False},
                    {"id": 1, "type": "persistent-claim", "size": "200Gi"},
                ],
            },
            "config": {
                "log.message.format.version": "3.6",
                "inter.broker.protocol.version": "3.6",
                "offsets.topic.replication.factor": 3,
            },
        },
        "zookeeper": {
            "replicas": 3,
            "storage": {"type": "persistent-claim", "size": "10Gi", "class": "standard", "deleteClaim": True},
        },
    }


@pytest.fixture
def options():
    return MigrationOptions(namespace="kafka", cluster_name="b")
