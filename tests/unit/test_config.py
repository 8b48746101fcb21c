"""Tests for configuration loading and management."""

from pathlib import Path

import pytest

from subscription_sync.config import Config
from subscription_sync.exceptions import ConfigurationError
from subscription_sync.models.payment_session import SubscriptionType
from subscription_sync.models.settings import (
    PRODUCTION_BASE_URL,
    SANDBOX_BASE_URL,
    GatewayEnvironment,
    ServiceSettings,
)

BUNDLED_CONFIG = Path(__file__).resolve().parents[2] / "config" / "billing.yaml"

VALID_YAML = """
gateway:
  environment: production
  client_id: file-client
  client_secret: file-secret
  plan_id: P-PLAN
billing:
  billing_period: P1M
  grace_period: P3D
  price: "20.00"
  default_subscription_type: one_time
notifications:
  enabled: true
  project_id: my-project
  topic: my-topic
access:
  anonymous_post_limit: 2
"""


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    for name in ("CONFIG_PATH", "PAYPAL_CLIENT_ID", "PAYPAL_CLIENT_SECRET"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "billing.yaml"
    path.write_text(VALID_YAML, encoding="utf-8")
    return path


class TestConfigurationLoading:
    def test_bundled_config_loads(self):
        config = Config(str(BUNDLED_CONFIG))

        assert config.gateway.environment == GatewayEnvironment.SANDBOX
        assert config.billing.billing_period == "P1M"
        assert config.billing.grace_period == "P7D"
        assert config.billing.payment_session_ttl == "PT48H"
        assert config.notifications.enabled is False
        assert config.access.anonymous_post_limit == 1

    def test_sections_are_loaded(self, config_file):
        config = Config(str(config_file))

        assert config.config_path == config_file
        assert config.gateway.plan_id == "P-PLAN"
        assert config.gateway.resolved_base_url == PRODUCTION_BASE_URL
        assert config.billing.grace_period == "P3D"
        assert config.billing.price == "20.00"
        assert config.billing.default_subscription_type == SubscriptionType.ONE_TIME
        assert config.notifications.project_id == "my-project"
        assert config.access.anonymous_post_limit == 2

    def test_path_from_environment(self, config_file, monkeypatch):
        monkeypatch.setenv("CONFIG_PATH", str(config_file))
        assert Config().config_path == config_file

    def test_missing_sections_use_defaults(self, tmp_path):
        path = tmp_path / "billing.yaml"
        path.write_text("billing:\n  price: '5.00'\n", encoding="utf-8")

        config = Config(str(path))

        assert config.gateway.resolved_base_url == SANDBOX_BASE_URL
        assert config.billing.price == "5.00"
        assert config.billing.default_subscription_type == SubscriptionType.RECURRING

    def test_reload_picks_up_changes(self, config_file):
        config = Config(str(config_file))
        config_file.write_text(VALID_YAML.replace("P3D", "P5D"), encoding="utf-8")

        config.reload()

        assert config.billing.grace_period == "P5D"

    def test_from_settings(self):
        config = Config.from_settings(ServiceSettings())

        assert config.config_path is None
        assert config.billing.billing_period == "P1M"
        with pytest.raises(ConfigurationError):
            config.reload()


class TestEnvironmentOverrides:
    def test_credentials_from_environment(self, config_file, monkeypatch):
        monkeypatch.setenv("PAYPAL_CLIENT_ID", "env-client")
        monkeypatch.setenv("PAYPAL_CLIENT_SECRET", "env-secret")

        config = Config(str(config_file))

        assert config.gateway.client_id == "env-client"
        assert config.gateway.client_secret == "env-secret"

    def test_file_credentials_without_environment(self, config_file):
        assert Config(str(config_file)).gateway.client_id == "file-client"


class TestConfigurationErrors:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            Config(str(tmp_path / "missing.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "billing.yaml"
        path.write_text("gateway: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="parse YAML"):
            Config(str(path))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "billing.yaml"
        path.write_text("", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="empty"):
            Config(str(path))

    def test_root_must_be_mapping(self, tmp_path):
        path = tmp_path / "billing.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="mapping"):
            Config(str(path))

    def test_invalid_duration(self, tmp_path):
        path = tmp_path / "billing.yaml"
        path.write_text("billing:\n  grace_period: weekly\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="validation failed"):
            Config(str(path))

    def test_invalid_environment(self, tmp_path):
        path = tmp_path / "billing.yaml"
        path.write_text("gateway:\n  environment: staging\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            Config(str(path))
