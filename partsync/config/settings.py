"""
Centralized configuration management for partsync.

Uses Pydantic Settings for validation and environment variable loading.
Loads from .env file if present, falls back to environment variables, then defaults.
"""
import json
from typing import Annotated, Any, List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class ReplicationSettings(BaseSettings):
    """Source/target clusters, database filters and checkpoint location."""

    model_config = SettingsConfigDict(
        env_prefix="REPLICATION_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    source_uri: str = Field(
        default="mongodb://localhost:27017/?replicaSet=rs0",
        description="Source cluster connection URI (must support change streams)"
    )
    target_uri: str = Field(
        default="mongodb://localhost:27018",
        description="Target cluster connection URI"
    )

    include_databases: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Databases to replicate (empty means all)"
    )
    ignore_databases: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Databases never replicated"
    )

    checkpoint_database: str = Field(default="partsync", description="Checkpoint database on target")
    checkpoint_collection: str = Field(default="checkpoints", description="Checkpoint collection on target")
    checkpoint_save_attempts: int = Field(
        default=1,
        description="Attempts per checkpoint save before the failure is logged and skipped"
    )

    max_await_time_ms: int = Field(
        default=1000,
        description="Max wait per change stream poll; bounds how long stop() takes when idle"
    )
    server_selection_timeout_ms: int = Field(default=10000, description="Server selection timeout")
    failure_journal_size: int = Field(default=100, description="Recent failures kept in memory")

    @field_validator("include_databases", "ignore_databases", mode="before")
    @classmethod
    def split_database_list(cls, v: Any) -> Any:
        """Accept ``"a,b"`` or a JSON list from the environment."""
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                return json.loads(v)
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @field_validator("max_await_time_ms", "checkpoint_save_attempts", "failure_journal_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    level: str = Field(default="INFO", description="Log level")
    json_format: bool = Field(default=True, description="Emit JSON log lines")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()


class APISettings(BaseSettings):
    """API server configuration."""

    model_config = SettingsConfigDict(
        env_prefix="API_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=8080, description="API server port")
    autostart: bool = Field(default=False, description="Start replication when the API starts")


class Settings(BaseSettings):
    """Main application settings combining all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    environment: str = Field(default="development", description="Application environment")

    replication: ReplicationSettings = Field(default_factory=ReplicationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    api: APISettings = Field(default_factory=APISettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed = {"development", "staging", "production"}
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


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
