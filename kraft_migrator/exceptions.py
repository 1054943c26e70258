"""Exceptions raised by the migration workflow."""

from typing import Any, Optional


class MigrationError(Exception):
    """Base class for unrecoverable migration failures."""

    pass


class ConfigIncomplete(MigrationError):
    """A mandatory configuration field could not be found or derived."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"Required field '{field}' is missing")


class DeadlineExceeded(MigrationError):
    """A polled condition did not reach its target before the timeout."""

    def __init__(self, description: str, timeout: float, last_value: Any = None):
        self.description = description
        self.timeout = timeout
        self.last_value = last_value
        super().__init__(
            f"Timed out after {timeout:g}s waiting for {description} "
            f"(last observed: {last_value!r})"
        )


class ApplyFailed(MigrationError):
    """A write against the control plane was rejected or failed."""

    def __init__(self, operation: str, target: str, reason: str):
        self.operation = operation
        self.target = target
        self.reason = reason
        super().__init__(f"Failed to {operation} {target}: {reason}")


class MissingNodeIds(MigrationError):
    """A node pool to evacuate reports no assigned node ids."""

    def __init__(self, pool_name: str):
        self.pool_name = pool_name
        super().__init__(f"Could not retrieve node IDs from node pool '{pool_name}'")


class ClusterNotFound(MigrationError):
    """The namespace or the Kafka cluster does not exist."""

    pass


class PoolMismatch(MigrationError):
    """A created node pool does not match the configuration it mirrors."""

    pass


class StatusUnavailable(MigrationError):
    """The cluster status does not expose a readable migration state."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.details = details or {}
        super().__init__(message)


class ControlPlaneError(MigrationError):
    """A read against the control plane kept failing."""

    pass


class AlreadyMigrated(Exception):
    """Signals that the cluster already runs in KRaft mode. Not an error."""

    pass
