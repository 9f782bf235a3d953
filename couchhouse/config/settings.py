"""
Centralized configuration management for couchhouse.

Uses Pydantic Settings for validation and environment variable loading.
Loads from .env file if present, falls back to environment variables, then defaults.
"""
from typing import Literal, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..connectors.clickhouse_writer import WriteMode


class CloudantSettings(BaseSettings):
    """Cloudant source configuration.

    Connection URL and credentials are read by the Cloudant SDK itself from
    CLOUDANT_URL, CLOUDANT_APIKEY and friends.
    """

    model_config = SettingsConfigDict(
        env_prefix="CLOUDANT_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    database: Optional[str] = Field(
        default=None,
        description="Database whose changes feed is replicated (the feed identity)"
    )
    service_name: str = Field(default="cloudant", description="SDK service name for credential lookup")


class MongoSettings(BaseSettings):
    """MongoDB source configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MONGO_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    uri: str = Field(default="mongodb://localhost:27017", description="MongoDB connection URI")
    database: str = Field(default="test", description="Database holding the watched collection")


class ClickHouseSettings(BaseSettings):
    """ClickHouse sink configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CLICKHOUSE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    host: str = Field(default="127.0.0.1", description="ClickHouse host")
    port: int = Field(default=8123, description="ClickHouse HTTP port")
    username: str = Field(default="default", description="ClickHouse username")
    password: str = Field(default="", description="ClickHouse password")
    database: str = Field(default="couchhouse", description="Database holding one table per feed")
    secure: bool = Field(default=False, description="Use HTTPS")
    send_receive_timeout: int = Field(default=300, description="Write timeout in seconds")
    write_mode: WriteMode = Field(
        default=WriteMode.ASYNC,
        description="'async' acknowledges before data is flushed; 'sync' waits for storage"
    )


class CheckpointSettings(BaseSettings):
    """Checkpoint storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CHECKPOINT_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    backend: Literal["file", "sql"] = Field(default="file", description="Checkpoint backend")
    directory: str = Field(default=".", description="Directory for JSON state files")
    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy URL for the sql backend"
    )


class ReplicationSettings(BaseSettings):
    """Pipeline configuration."""

    model_config = SettingsConfigDict(
        env_prefix="REPLICATION_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    source: Literal["cloudant", "mongo"] = Field(default="cloudant", description="Change feed source")
    batch_size: int = Field(default=100, description="Events per sink write")
    queue_size: int = Field(default=1, description="Completed batches buffered ahead of the writer")
    follow: bool = Field(
        default=True,
        description="Follow the feed indefinitely; False stops once caught up"
    )

    @field_validator("batch_size", "queue_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v


class Settings(BaseSettings):
    """Main application settings combining all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    log_level: str = Field(default="INFO", description="Log level")
    metrics_port: Optional[int] = Field(
        default=None,
        description="Serve Prometheus metrics on this port when set"
    )

    cloudant: CloudantSettings = Field(default_factory=CloudantSettings)
    mongo: MongoSettings = Field(default_factory=MongoSettings)
    clickhouse: ClickHouseSettings = Field(default_factory=ClickHouseSettings)
    checkpoint: CheckpointSettings = Field(default_factory=CheckpointSettings)
    replication: ReplicationSettings = Field(default_factory=ReplicationSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v.upper()


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
