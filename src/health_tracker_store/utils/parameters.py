"""
Configuration and parameter loading using Pydantic.

This module provides centralized configuration management for the store.
All parameters are loaded from YAML and validated using Pydantic models.
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from health_tracker_store.utils.exceptions import ConfigurationError


class StorageConfig(BaseModel):
    """Local key-value storage configuration."""

    backend: str = Field(default="file", pattern="^(memory|file)$")
    data_dir: str = "data/store"
    key_prefix: str = "health_tracker_"
    quota_bytes: int | None = None


class SyncConfig(BaseModel):
    """Remote synchronization configuration."""

    debounce_seconds: float = Field(default=2.0, ge=0)
    seed_remote_on_first_use: bool = True


class OAuth2Config(BaseModel):
    """OAuth2 authentication configuration."""

    credentials_path: str
    token_path: str
    scopes: list[str]


class ServiceAccountConfig(BaseModel):
    """Service account authentication configuration."""

    credentials_path: str
    scopes: list[str]


class DriveConfig(BaseModel):
    """Google Drive document store configuration."""

    auth_method: str = Field(pattern="^(oauth2|service_account)$")
    oauth2: OAuth2Config | None = None
    service_account: ServiceAccountConfig | None = None
    folder_name: str | None = None
    folder_id: str | None = None


class RemoteConfig(BaseModel):
    """Remote document store configuration."""

    backend: str = Field(default="memory", pattern="^(memory|drive)$")
    drive: DriveConfig | None = None


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str | None = None
    console: bool = True


class AppConfig(BaseSettings):
    """Main application configuration."""

    timezone: str = "UTC"
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(env_prefix="HTS_", case_sensitive=False)


class ParameterLoader:
    """
    Centralized parameter loader for the store.

    Loads and validates configuration from YAML files using Pydantic models.
    Provides type-safe access to all configuration parameters.
    """

    def __init__(self, config_path: str = "config/config.yaml") -> None:
        """
        Initialize parameter loader.

        Args:
            config_path: Path to the YAML configuration file.

        Raises:
            ConfigurationError: If configuration file cannot be loaded or is invalid.
        """
        self.config_path = Path(config_path)
        self.config: AppConfig
        self._load_config()

    def _load_config(self) -> None:
        """
        Load configuration from YAML file.

        Raises:
            ConfigurationError: If configuration file cannot be loaded or is invalid.
        """
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, encoding="utf-8") as f:
                config_dict = yaml.safe_load(f) or {}

            self.config = AppConfig(**config_dict)

        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

    def get_timezone(self) -> str:
        """Get the timezone used to compute calendar dates."""
        return self.config.timezone

    def get_storage_config(self) -> StorageConfig:
        """Get local storage configuration."""
        return self.config.storage

    def get_sync_config(self) -> SyncConfig:
        """Get synchronization configuration."""
        return self.config.sync

    def get_remote_config(self) -> RemoteConfig:
        """Get remote document store configuration."""
        return self.config.remote

    def get_logging_config(self) -> LoggingConfig:
        """Get logging configuration."""
        return self.config.logging
