"""Configuration management for the binlog collector and recoverer."""

from __future__ import annotations

from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from binlog_pitr.domain.value_objects import LogCoordinate


def _validate_coordinate(value: str | None) -> str | None:
    if value is None or value == "":
        return None
    LogCoordinate.parse(value)
    return value


class SourceConfig(BaseModel):
    """Source database the collector replicates from."""

    host: str = Field(default="localhost", description="Source MySQL host")
    port: int = Field(default=3306, ge=1, le=65535, description="Source MySQL port")
    user: str = Field(default="root", description="Replication user")
    password: str = Field(default="", description="Replication password")
    server_id: int = Field(
        default=1_000_001, ge=1, description="Replica server id announced to the source"
    )
    heartbeat_seconds: float = Field(
        default=1.0, gt=0, description="Replication heartbeat used to observe cycle deadlines"
    )


class TargetDatabaseConfig(BaseModel):
    """Database the recoverer replays into."""

    host: str = Field(default="localhost", description="Target MySQL host")
    port: int = Field(default=3306, ge=1, le=65535, description="Target MySQL port")
    user: str = Field(default="root", description="Target user")
    password: str = Field(default="", description="Target password")
    connect_timeout: int = Field(default=10, ge=1, description="Connect timeout in seconds")


class S3Config(BaseModel):
    """S3-compatible object store settings."""

    endpoint_url: str | None = Field(default=None, description="Endpoint (MinIO, Ceph, ...)")
    bucket: str = Field(default="binlogs", description="Bucket name")
    region: str = Field(default="us-east-1", description="Region")
    access_key_id: str | None = Field(default=None, description="Access key id")
    secret_access_key: str | None = Field(default=None, description="Secret access key")
    force_path_style: bool = Field(default=False, description="Path-style addressing")
    max_attempts: int = Field(default=5, ge=1, description="botocore retry attempts")


class AzureConfig(BaseModel):
    """Azure blob store settings."""

    account_name: str | None = Field(default=None, description="Storage account name")
    account_key: str | None = Field(default=None, description="Storage account key")
    endpoint: str | None = Field(default=None, description="Blob service endpoint")
    connection_string: str | None = Field(default=None, description="Full connection string")
    container: str = Field(default="binlogs", description="Container name")


class FileSystemConfig(BaseModel):
    """Local directory used as an object store."""

    root: Path = Field(default=Path("/var/lib/binlog_pitr"), description="Root directory")


class StorageConfig(BaseModel):
    """Storage provider selection."""

    type: Literal["s3", "azure", "filesystem", "memory"] = Field(
        default="s3", description="Storage provider"
    )
    stream_id: str = Field(
        default="binlogs", min_length=1, description="Key prefix identifying the collection stream"
    )
    s3: S3Config = Field(default_factory=S3Config)
    azure: AzureConfig = Field(default_factory=AzureConfig)
    filesystem: FileSystemConfig = Field(default_factory=FileSystemConfig)

    @field_validator("stream_id")
    @classmethod
    def _no_slashes(cls, value: str) -> str:
        if "/" in value:
            raise ValueError("stream_id must not contain '/'")
        return value


class CollectorConfig(BaseModel):
    """Capture cycle configuration."""

    collect_span_seconds: float = Field(
        default=60.0, gt=0, description="Length of one collection cycle in seconds"
    )
    max_segment_size: int = Field(
        default=67108864, ge=1024, description="Maximum segment payload in bytes (default 64MB)"
    )
    max_append_retries: int = Field(
        default=5, ge=0, description="Retries for transient storage errors during commit"
    )
    max_read_retries: int = Field(
        default=5, ge=0, description="Retries for transient storage errors while resuming"
    )
    retry_backoff_seconds: float = Field(
        default=1.0, ge=0, description="Linear backoff step between retries"
    )
    commit_on_cancel: bool = Field(
        default=True, description="Commit the buffered events when cancelled mid-capture"
    )
    initial_coordinate: str | None = Field(
        default=None, description="file:position to start from on a cold start"
    )

    @field_validator("initial_coordinate")
    @classmethod
    def _check_initial(cls, value: str | None) -> str | None:
        return _validate_coordinate(value)


class RecoveryConfig(BaseModel):
    """Recovery job configuration."""

    target_type: Literal["latest", "timestamp", "coordinate"] = Field(
        default="latest", description="Kind of recovery target"
    )
    target_time: datetime | None = Field(default=None, description="Recovery timestamp")
    target_coordinate: str | None = Field(default=None, description="Recovery file:position")
    base_coordinate: str | None = Field(
        default=None, description="file:position the target database is consistent up to"
    )
    target_before_history: Literal["fail", "ignore"] = Field(
        default="fail", description="Policy for timestamps older than the first segment"
    )
    target_after_history: Literal["fail", "apply_available"] = Field(
        default="fail", description="Policy for targets newer than the last segment"
    )
    max_read_retries: int = Field(default=5, ge=0, description="Retries for segment reads")
    retry_backoff_seconds: float = Field(default=1.0, ge=0, description="Backoff step")
    prefetch: bool = Field(default=False, description="Download the next segment while applying")
    database: TargetDatabaseConfig = Field(default_factory=TargetDatabaseConfig)

    @field_validator("target_coordinate", "base_coordinate")
    @classmethod
    def _check_coordinates(cls, value: str | None) -> str | None:
        return _validate_coordinate(value)

    @model_validator(mode="after")
    def _target_is_complete(self) -> RecoveryConfig:
        if self.target_type == "timestamp" and self.target_time is None:
            raise ValueError("target_time is required for timestamp recovery")
        if self.target_type == "coordinate" and self.target_coordinate is None:
            raise ValueError("target_coordinate is required for coordinate recovery")
        return self


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="json", description="Log format")
    metrics_port: int | None = Field(
        default=None, ge=1, le=65535, description="Prometheus metrics port (disabled if unset)"
    )
    otel_endpoint: str | None = Field(
        default=None, description="OpenTelemetry collector endpoint"
    )
    otel_service_name: str = Field(default="binlog_pitr", description="Service name for tracing")


class Config(BaseSettings):
    """Main configuration for binlog collection and recovery."""

    model_config = SettingsConfigDict(
        env_prefix="BINLOG_PITR_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    source: SourceConfig = Field(default_factory=SourceConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    collector: CollectorConfig = Field(default_factory=CollectorConfig)
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> Config:
        """Load configuration from a YAML file instead of the environment.

        Values in the file take precedence over environment variables.
        """
        with open(path, encoding="utf-8") as f:
            try:
                data: dict[str, Any] = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"{path}: invalid YAML: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"{path}: top-level YAML value must be a mapping")
        return cls(**data)


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()
