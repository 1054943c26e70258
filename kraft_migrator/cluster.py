"""Kubernetes client connection."""

from typing import Optional

from kubernetes import config
from kubernetes.client import ApiClient, ApiextensionsV1Api, CoreV1Api, CustomObjectsApi
from kubernetes.config.config_exception import ConfigException

from .config import Settings


class ClusterConnection:
    """Represents a connection to the Kubernetes cluster running Strimzi."""

    def __init__(self, kubeconfig_path: Optional[str] = None, context: Optional[str] = None):
        """
        Initialize cluster connection.

        Args:
            kubeconfig_path: Path to a kubeconfig file (default location when None)
            context: Specific kubeconfig context to use

        Raises:
            ValueError: If no usable configuration is found
        """
        self.kubeconfig_path = kubeconfig_path
        self.context = context
        self._api_client: Optional[ApiClient] = None
        self._core_v1: Optional[CoreV1Api] = None
        self._custom_objects: Optional[CustomObjectsApi] = None
        self._apiextensions_v1: Optional[ApiextensionsV1Api] = None

        self._initialize_client()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        kubeconfig_path: Optional[str] = None,
        context: Optional[str] = None,
    ) -> "ClusterConnection":
        """Connect using the process settings; explicit arguments take precedence."""
        return cls(
            kubeconfig_path=kubeconfig_path or settings.kubeconfig_path,
            context=context or settings.kube_context,
        )

    def _initialize_client(self):
        """Initialize Kubernetes API client."""
        try:
            if self.kubeconfig_path or self.context:
                config.load_kube_config(
                    config_file=self.kubeconfig_path,
                    context=self.context,
                )
            else:
                try:
                    config.load_incluster_config()
                except ConfigException:
                    config.load_kube_config()

            self._api_client = ApiClient()
            self._core_v1 = CoreV1Api(self._api_client)
            self._custom_objects = CustomObjectsApi(self._api_client)
            self._apiextensions_v1 = ApiextensionsV1Api(self._api_client)

        except Exception as e:
            raise ValueError(f"Failed to initialize cluster connection: {e}") from e

    @property
    def core_v1(self) -> CoreV1Api:
        """Get CoreV1Api instance."""
        if not self._core_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._core_v1

    @property
    def custom_objects(self) -> CustomObjectsApi:
        """Get CustomObjectsApi instance."""
        if not self._custom_objects:
            raise RuntimeError("Cluster connection not initialized")
        return self._custom_objects

    @property
    def apiextensions_v1(self) -> ApiextensionsV1Api:
        """Get ApiextensionsV1Api instance."""
        if not self._apiextensions_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._apiextensions_v1

    def close(self):
        """Close the cluster connection."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None

        self._core_v1 = None
        self._custom_objects = None
        self._apiextensions_v1 = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
