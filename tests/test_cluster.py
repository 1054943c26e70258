"""Tests for ClusterConnection."""

import pytest
from unittest.mock import patch
from kubernetes.config.config_exception import ConfigException

from kraft_migrator.cluster import ClusterConnection
from kraft_migrator.config import Settings


@pytest.fixture
def kube_config():
    with patch("kraft_migrator.cluster.config") as mock_config:
        yield mock_config


class TestClusterConnection:
    """Test cases for ClusterConnection."""

    def test_explicit_kubeconfig(self, kube_config):
        ClusterConnection(kubeconfig_path="/tmp/config", context="prod")

        kube_config.load_kube_config.assert_called_once_with(config_file="/tmp/config", context="prod")
        kube_config.load_incluster_config.assert_not_called()

    def test_prefers_in_cluster_config(self, kube_config):
        connection = ClusterConnection()

        kube_config.load_incluster_config.assert_called_once()
        kube_config.load_kube_config.assert_not_called()
        assert connection.custom_objects is not None

    def test_falls_back_to_default_kubeconfig(self, kube_config):
        kube_config.load_incluster_config.side_effect = ConfigException("not in a pod")

        ClusterConnection()

        kube_config.load_kube_config.assert_called_once_with()

    def test_no_configuration(self, kube_config):
        kube_config.load_incluster_config.side_effect = ConfigException("not in a pod")
        kube_config.load_kube_config.side_effect = ConfigException("no kubeconfig")

        with pytest.raises(ValueError, match="Failed to initialize cluster connection"):
            ClusterConnection()

    def test_from_settings(self, kube_config):
        settings = Settings(_env_file=None, kubeconfig_path="/etc/kube/config", kube_context="staging")

        connection = ClusterConnection.from_settings(settings)

        assert connection.kubeconfig_path == "/etc/kube/config"
        assert connection.context == "staging"

    def test_from_settings_overrides(self, kube_config):
        settings = Settings(_env_file=None, kubeconfig_path="/etc/kube/config", kube_context="staging")

        connection = ClusterConnection.from_settings(settings, context="prod")

        assert connection.kubeconfig_path == "/etc/kube/config"
        assert connection.context == "prod"

    def test_close(self, kube_config):
        with ClusterConnection() as connection:
            assert connection.core_v1 is not None

        with pytest.raises(RuntimeError):
            connection.core_v1
