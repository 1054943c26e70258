"""Tests for status readers."""

from kraft_migrator.models import KRaftMode, MetadataPhase, MigrationPhase, NodePoolSpec
from kraft_migrator.status import (
    cruise_control_pods,
    kraft_mode,
    metadata_phase,
    migration_phase,
    pool_pod_pattern,
    pool_pods,
    raw_status_fields,
    wait_for_pool_pods,
)


def kafka(status=None, annotations=None):
    return {"metadata": {"name": "b", "annotations": annotations or {}}, "status": status or {}}


class TestPhaseReaders:
    """Test cases for migration and metadata phase readers."""

    def test_scalar_metadata_state(self):
        resource = kafka({"kafkaMetadataState": "KRaftDualWriting"})

        assert migration_phase(resource) is MigrationPhase.KRAFT_DUAL_WRITING
        assert metadata_phase(resource) is MetadataPhase.ZOOKEEPER

    def test_nested_metadata_state(self):
        resource = kafka({"kafkaMetadataState": {"state": "PreKRaft"}})

        assert metadata_phase(resource) is MetadataPhase.PRE_KRAFT

    def test_migration_status_fallback(self):
        resource = kafka({"kafkaMigrationStatus": {"state": "KRaftPostMigration"}})

        assert migration_phase(resource) is MigrationPhase.KRAFT_POST_MIGRATION
        assert metadata_phase(resource) is MetadataPhase.UNKNOWN

    def test_scalar_wins_on_disagreement(self):
        resource = kafka(
            {
                "kafkaMetadataState": "KRaftPostMigration",
                "kafkaMigrationStatus": {"state": "KRaftMigration"},
            }
        )

        assert migration_phase(resource) is MigrationPhase.KRAFT_POST_MIGRATION

    def test_no_status(self):
        assert migration_phase(kafka()) is MigrationPhase.UNKNOWN
        assert metadata_phase(None) is MetadataPhase.UNKNOWN

    def test_raw_status_fields(self):
        resource = kafka({"kafkaMigrationStatus": {"state": "Weird"}})

        assert raw_status_fields(resource) == {
            "kafkaMetadataState": None,
            "kafkaMigrationStatus": {"state": "Weird"},
        }

    def test_kraft_mode(self):
        assert kraft_mode(kafka(annotations={"strimzi.io/kraft": "migration"})) is KRaftMode.MIGRATION
        assert kraft_mode(kafka()) is KRaftMode.UNSET


class TestPods:
    """Test cases for pod selection."""

    def test_pool_pattern_is_exact(self):
        pattern = pool_pod_pattern("a", "kafka")

        assert pattern.match("a-kafka-0")
        assert pattern.match("a-kafka-12")
        assert not pattern.match("a-kafka-a-0")
        assert not pattern.match("a-kafka-exporter-5d7f")

    def test_pool_pods_keep_pools_apart(self, control_plane):
        control_plane.add_pod("a", "a-kafka-0")
        control_plane.add_pod("a", "a-kafka-a-0")
        control_plane.add_pod("a", "a-kafka-a-1", ready=False)

        assert [pod.name for pod in pool_pods(control_plane, "a", "kafka")] == ["a-kafka-0"]
        assert [pod.ready for pod in pool_pods(control_plane, "a", "kafka-a")] == [True, False]

    def test_cruise_control_pods(self, control_plane):
        control_plane.add_pod("a", "a-kafka-0")
        control_plane.add_pod("a", "a-cruise-control-7c9f", name_label="a-cruise-control")

        assert [pod.name for pod in cruise_control_pods(control_plane, "a")] == ["a-cruise-control-7c9f"]

    def test_wait_for_pool_pods(self, control_plane, poller):
        pool = control_plane.add_pool("kafka", "b", 3, {"type": "ephemeral"})

        spec = NodePoolSpec.model_validate(
            {
                "name": "kafka",
                "namespace": "kafka",
                "cluster": "b",
                "replicas": pool["spec"]["replicas"],
                "roles": ["broker"],
                "storage": {"type": "ephemeral"},
            }
        )

        assert wait_for_pool_pods(control_plane, poller, spec, timeout=600) == 3
