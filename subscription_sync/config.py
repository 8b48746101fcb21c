"""Configuration management - loads billing.yaml and environment overrides."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from subscription_sync.exceptions import ConfigurationError
from subscription_sync.models.settings import (
    AccessConfig,
    BillingConfig,
    GatewayConfig,
    NotificationsConfig,
    ServiceSettings,
)

DEFAULT_CONFIG_PATH = "config/billing.yaml"

# Environment variables that override secrets from the file
ENV_OVERRIDES = {
    "PAYPAL_CLIENT_ID": "client_id",
    "PAYPAL_CLIENT_SECRET": "client_secret",
}


class Config:
    """Application configuration loader.

    Loads billing.yaml and provides validated access to:
    - Payment processor settings
    - Billing periods and pricing
    - Notification (Pub/Sub) settings
    - Access gate settings
    """

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to billing.yaml. If not provided, uses CONFIG_PATH env var
                        or defaults to ./config/billing.yaml
        """
        self._config_path = self._resolve_config_path(config_path)
        self._settings: Optional[ServiceSettings] = None
        self._load_config()

    @classmethod
    def from_settings(cls, settings: ServiceSettings) -> "Config":
        """Build a Config from already-validated settings, without reading a file."""
        config = cls.__new__(cls)
        config._config_path = None
        config._settings = settings
        return config

    def _resolve_config_path(self, config_path: Optional[str]) -> Path:
        """Resolve configuration file path from argument, env var, or default."""
        if config_path:
            return Path(config_path)

        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        return Path(DEFAULT_CONFIG_PATH)

    def _load_config(self) -> None:
        """Load and validate billing.yaml."""
        if not self._config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self._config_path}\n"
                f"Please create {DEFAULT_CONFIG_PATH} or set CONFIG_PATH environment variable"
            )

        try:
            with open(self._config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}")

        if not raw_config:
            raise ConfigurationError(f"Configuration file is empty: {self._config_path}")
        if not isinstance(raw_config, dict):
            raise ConfigurationError(
                f"Configuration root must be a mapping: {self._config_path}"
            )

        gateway = raw_config.setdefault("gateway", {}) or {}
        raw_config["gateway"] = gateway
        for env_name, field_name in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                gateway[field_name] = value

        try:
            self._settings = ServiceSettings(**raw_config)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}")

    @property
    def settings(self) -> ServiceSettings:
        """Get validated settings."""
        if self._settings is None:
            raise ConfigurationError("Configuration not loaded")
        return self._settings

    @property
    def config_path(self) -> Optional[Path]:
        """Get path to configuration file."""
        return self._config_path

    @property
    def gateway(self) -> GatewayConfig:
        return self.settings.gateway

    @property
    def billing(self) -> BillingConfig:
        return self.settings.billing

    @property
    def notifications(self) -> NotificationsConfig:
        return self.settings.notifications

    @property
    def access(self) -> AccessConfig:
        return self.settings.access

    def reload(self) -> None:
        """Reload configuration from disk."""
        if self._config_path is None:
            raise ConfigurationError("Configuration was not loaded from a file")
        self._load_config()
