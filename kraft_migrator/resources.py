"""Typed access to Strimzi custom resources and pods."""

import logging
from typing import Any, List, Optional, Sequence

from kubernetes.client.exceptions import ApiException
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential
from urllib3.exceptions import HTTPError

from .cluster import ClusterConnection
from .config import Settings
from .exceptions import ApplyFailed, ControlPlaneError
from .models import DEFAULT_API_VERSION, STRIMZI_GROUP, PodReadiness, ResourceKind

logger = logging.getLogger(__name__)

NODE_POOL_CRD = f"{ResourceKind.NODE_POOL.plural}.{STRIMZI_GROUP}"

MERGE_PATCH = "application/merge-patch+json"
JSON_PATCH = "application/json-patch+json"

FieldPath = Sequence[Any]


def is_absent(value: Any) -> bool:
    """Empty values and the literal "null" mean the field is not set."""
    return value is None or value == "" or value == "null"


def lookup(obj: Any, path: FieldPath) -> Any:
    """
    Resolve a field path inside a resource.

    Args:
        obj: Resource dict (or any nested value)
        path: Sequence of dict keys and list indices

    Returns:
        The value, or None when any segment is missing or the value is absent
    """
    current = obj
    for key in path:
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and isinstance(key, int):
            current = current[key] if -len(current) <= key < len(current) else None
        else:
            return None
        if current is None:
            return None
    return None if is_absent(current) else current


def json_pointer(path: FieldPath) -> str:
    """Convert a field path to an RFC 6901 JSON pointer."""
    return "".join(
        "/" + str(segment).replace("~", "~0").replace("/", "~1") for segment in path
    )


def label_selector(labels: dict[str, str]) -> str:
    return ",".join(f"{k}={v}" for k, v in labels.items())


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, ApiException):
        return exc.status == 429 or not exc.status or exc.status >= 500
    return isinstance(exc, HTTPError)


class ResourceAccessor:
    """Reads and writes Kafka, KafkaNodePool, KafkaRebalance and Pod resources."""

    def __init__(
        self,
        cluster: ClusterConnection,
        namespace: str,
        settings: Optional[Settings] = None,
        node_pool_api_version: Optional[str] = None,
    ):
        """
        Initialize resource accessor.

        Args:
            cluster: Cluster connection
            namespace: Namespace holding the Kafka clusters
            settings: Settings supplying the Strimzi API versions
            node_pool_api_version: KafkaNodePool apiVersion (detect_node_pool_api_version
                fills it in when omitted)
        """
        self.cluster = cluster
        self.namespace = namespace
        self.core_v1 = cluster.core_v1
        self.custom_objects = cluster.custom_objects
        self.api_versions: dict[ResourceKind, str] = {
            ResourceKind.KAFKA: settings.kafka_api_version if settings else DEFAULT_API_VERSION,
            ResourceKind.REBALANCE: (
                settings.rebalance_api_version if settings else DEFAULT_API_VERSION
            ),
            ResourceKind.NODE_POOL: node_pool_api_version
            or (settings.node_pool_api_version if settings else None)
            or DEFAULT_API_VERSION,
        }

    def api_version(self, kind: ResourceKind) -> str:
        return self.api_versions[kind]

    def _coordinates(self, kind: ResourceKind) -> dict[str, str]:
        group, _, version = self.api_versions[kind].partition("/")
        return {
            "group": group,
            "version": version,
            "namespace": self.namespace,
            "plural": kind.plural,
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception(_is_transient),
        reraise=True,
    )
    def _read(self, func, *args, **kwargs):
        return func(*args, **kwargs)

    def detect_node_pool_api_version(self) -> str:
        """
        Detect the KafkaNodePool apiVersion served by the cluster.

        Prefers the CRD's storage version, then the last version it lists,
        and falls back to kafka.strimzi.io/v1beta2.

        Returns:
            The apiVersion now used for node pool requests
        """
        version = None
        try:
            crd = self._read(
                self.cluster.apiextensions_v1.read_custom_resource_definition, NODE_POOL_CRD
            )
            versions = crd.spec.versions or []
            stored = [v.name for v in versions if v.storage]
            if stored:
                version = stored[0]
            elif versions:
                version = versions[-1].name
        except (ApiException, HTTPError) as e:
            logger.debug(f"Could not read CRD {NODE_POOL_CRD}: {e}")

        if version:
            api_version = f"{STRIMZI_GROUP}/{version}"
        else:
            api_version = DEFAULT_API_VERSION
            logger.warning(
                "Could not detect KafkaNodePool API version from cluster, "
                f"using default: {api_version}"
            )

        self.api_versions[ResourceKind.NODE_POOL] = api_version
        return api_version

    def namespace_exists(self) -> bool:
        try:
            self._read(self.core_v1.read_namespace, self.namespace)
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise ControlPlaneError(
                f"Failed to read namespace '{self.namespace}': {e.reason}"
            ) from e
        except HTTPError as e:
            raise ControlPlaneError(f"Failed to read namespace '{self.namespace}': {e}") from e

    def get(self, kind: ResourceKind, name: str) -> Optional[dict[str, Any]]:
        """
        Get a custom resource.

        Args:
            kind: Resource kind
            name: Resource name

        Returns:
            Resource dict or None if not found

        Raises:
            ControlPlaneError: If the read keeps failing
        """
        try:
            return self._read(
                self.custom_objects.get_namespaced_custom_object,
                name=name,
                **self._coordinates(kind),
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise ControlPlaneError(f"Failed to read {kind.value} '{name}': {e.reason}") from e
        except HTTPError as e:
            raise ControlPlaneError(f"Failed to read {kind.value} '{name}': {e}") from e

    def get_field(self, kind: ResourceKind, name: str, path: FieldPath) -> Any:
        """
        Read one field of a custom resource.

        Returns:
            The field value, or None if the resource or field is absent
        """
        return lookup(self.get(kind, name), path)

    def list(self, kind: ResourceKind, labels: Optional[dict[str, str]] = None) -> list[dict]:
        """
        List custom resources.

        Args:
            kind: Resource kind
            labels: Label selector dict

        Returns:
            List of resource dicts
        """
        selector = label_selector(labels) if labels else None
        try:
            result = self._read(
                self.custom_objects.list_namespaced_custom_object,
                label_selector=selector,
                **self._coordinates(kind),
            )
        except (ApiException, HTTPError) as e:
            raise ControlPlaneError(f"Failed to list {kind.value} resources: {e}") from e
        return result.get("items", [])

    def pod_readiness(self, labels: dict[str, str]) -> List[PodReadiness]:
        """
        List pods with their Ready condition.

        Args:
            labels: Label selector dict

        Returns:
            List of PodReadiness entries
        """
        try:
            result = self._read(
                self.core_v1.list_namespaced_pod,
                namespace=self.namespace,
                label_selector=label_selector(labels),
            )
        except (ApiException, HTTPError) as e:
            raise ControlPlaneError(f"Failed to list pods: {e}") from e

        pods = []
        for pod in result.items:
            conditions = (pod.status.conditions if pod.status else None) or []
            ready = any(c.type == "Ready" and c.status == "True" for c in conditions)
            pods.append(PodReadiness(name=pod.metadata.name, ready=ready))
        return pods

    def apply(self, manifest: dict[str, Any]) -> dict[str, Any]:
        """
        Create a custom resource, or update it if it already exists.

        Args:
            manifest: Full resource manifest

        Returns:
            The stored resource

        Raises:
            ApplyFailed: If the API server rejects the manifest
        """
        kind = ResourceKind(manifest["kind"])
        name = manifest["metadata"]["name"]
        coordinates = self._coordinates(kind)
        try:
            return self.custom_objects.create_namespaced_custom_object(
                body=manifest, **coordinates
            )
        except ApiException as e:
            if e.status != 409:
                raise ApplyFailed("create", f"{kind.value} '{name}'", str(e.reason)) from e

        logger.info(f"{kind.value} '{name}' already exists, updating it")
        try:
            return self.custom_objects.patch_namespaced_custom_object(
                name=name, body=manifest, _content_type=MERGE_PATCH, **coordinates
            )
        except ApiException as e:
            raise ApplyFailed("update", f"{kind.value} '{name}'", str(e.reason)) from e

    def annotate(self, kind: ResourceKind, name: str, key: str, value: str) -> None:
        """Set (overwrite) one annotation on a custom resource."""
        body = {"metadata": {"annotations": {key: value}}}
        try:
            self.custom_objects.patch_namespaced_custom_object(
                name=name, body=body, _content_type=MERGE_PATCH, **self._coordinates(kind)
            )
        except ApiException as e:
            raise ApplyFailed(
                f"annotate {key}={value} on", f"{kind.value} '{name}'", str(e.reason)
            ) from e

    def patch_add(self, kind: ResourceKind, name: str, path: FieldPath, value: Any) -> None:
        """Add a field with a JSON patch."""
        self._json_patch(kind, name, {"op": "add", "path": json_pointer(path), "value": value})

    def patch_remove(self, kind: ResourceKind, name: str, path: FieldPath) -> None:
        """Remove a field with a JSON patch."""
        self._json_patch(kind, name, {"op": "remove", "path": json_pointer(path)})

    def _json_patch(self, kind: ResourceKind, name: str, operation: dict[str, Any]) -> None:
        try:
            self.custom_objects.patch_namespaced_custom_object(
                name=name, body=[operation], _content_type=JSON_PATCH, **self._coordinates(kind)
            )
        except ApiException as e:
            raise ApplyFailed(
                f"{operation['op']} {operation['path']} on", f"{kind.value} '{name}'", str(e.reason)
            ) from e

    def delete(self, kind: ResourceKind, name: str) -> bool:
        """
        Delete a custom resource.

        Returns:
            True if deleted, False if not found

        Raises:
            ApplyFailed: If deletion fails
        """
        try:
            self.custom_objects.delete_namespaced_custom_object(
                name=name, **self._coordinates(kind)
            )
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            raise ApplyFailed("delete", f"{kind.value} '{name}'", str(e.reason)) from e
