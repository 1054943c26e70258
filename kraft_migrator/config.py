"""Configuration management for the KRaft migrator."""

from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import DEFAULT_API_VERSION, StorageType


class Settings(BaseSettings):
    """Process-level settings, read from the environment or a .env file."""

    model_config = SettingsConfigDict(
        env_prefix="KRAFT_MIGRATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = "INFO"

    # Kubernetes Settings
    kubeconfig_path: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file (in-cluster config when unset)",
    )
    kube_context: Optional[str] = None

    # Strimzi API versions
    kafka_api_version: str = DEFAULT_API_VERSION
    rebalance_api_version: str = DEFAULT_API_VERSION
    node_pool_api_version: Optional[str] = Field(
        default=None,
        description="KafkaNodePool apiVersion; detected from the cluster when unset",
    )

    # Polling
    poll_interval_seconds: float = 10
    rebalance_poll_interval_seconds: float = 15
    reconcile_settle_seconds: float = 5

    # Timeouts
    pod_ready_timeout_seconds: float = 600
    cruise_control_timeout_seconds: float = 600
    cruise_control_verify_timeout_seconds: float = 300
    proposal_timeout_seconds: float = 1800
    rebalance_timeout_seconds: float = 3600
    pool_delete_timeout_seconds: float = 300


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


class MigrationOptions(BaseModel):
    """Per-run options for migrating one Kafka cluster."""

    namespace: str
    cluster_name: str
    controller_pool_name: Optional[str] = None
    controller_replicas: Optional[int] = Field(default=None, gt=0)
    controller_storage_type: Optional[StorageType] = None
    controller_storage_sizes: list[str] = Field(default_factory=list)
    controller_storage_class: Optional[str] = None
    wait_timeout: float = Field(default=3600, gt=0)
    skip_precondition_checks: bool = False

    @field_validator("controller_storage_type", mode="before")
    @classmethod
    def _parse_storage_type(cls, value):
        if value is None or isinstance(value, StorageType):
            return value
        try:
            return StorageType.parse(value)
        except ValueError:
            raise ValueError(
                f"Invalid controller storage type: {value} "
                "(valid options: persistent-claim, ephemeral, jbod)"
            ) from None

    @field_validator("controller_storage_sizes", mode="before")
    @classmethod
    def _split_sizes(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [size.strip() for size in value.split(",")]
        return value

    @model_validator(mode="after")
    def _check_storage_consistency(self) -> "MigrationOptions":
        if len(self.controller_storage_sizes) > 1:
            if self.controller_storage_type not in (None, StorageType.JBOD):
                raise ValueError(
                    "Comma-separated sizes provided (indicating JBOD) but storage type "
                    f"is set to '{self.controller_storage_type.value}'; use 'jbod' or omit it"
                )
        return self

    @property
    def pool_name(self) -> str:
        return self.controller_pool_name or f"controller-{self.cluster_name}"

    @property
    def is_multi_volume_sizes(self) -> bool:
        return len(self.controller_storage_sizes) > 1
