"""
Unit Tests for Orchestrator Configuration Parsing

Reliability Level: L6 Critical
Python 3.8 Compatible

Tests the orchestrator configuration module:
- Default values for optional configuration
- Custom values from environment variables
- Invalid numeric values fall back to defaults
- Production without service URLs fails with CFG-040
"""

import os
import sys
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.orchestrator_config import (
    DEFAULT_AGENT_SERVICE_BASE_URL,
    DEFAULT_COLLATERAL_USD,
    DEFAULT_MAX_DURATION_SECONDS,
    DEFAULT_PORT,
    OrchestratorConfig,
    OrchestratorConfigErrorCode,
    OrchestratorConfigurationError,
    get_orchestrator_config,
    reset_orchestrator_config,
)


ENV_VARS = [
    "APP_ENV",
    "PORT",
    "DATABASE_URL",
    "AGENT_SERVICE_BASE_URL",
    "CHANNEL_SERVICE_BASE_URL",
    "SETTLEMENT_SERVICE_BASE_URL",
    "EXECUTION_TIMEOUT_SECONDS",
    "CHANNEL_TIMEOUT_SECONDS",
    "SETTLEMENT_TIMEOUT_SECONDS",
    "REMOTE_MAX_RETRIES",
    "DEFAULT_COLLATERAL_USD",
    "DEFAULT_MAX_DURATION_SECONDS",
    "CORS_ORIGINS",
]


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Isolate every test from the caller's environment and the singleton."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    reset_orchestrator_config()
    yield
    reset_orchestrator_config()


# =============================================================================
# Test Default Values
# =============================================================================

class TestDefaultValues:

    def test_development_defaults(self) -> None:
        config = OrchestratorConfig.from_environment(validate=True)

        assert config.app_env == "development"
        assert config.port == DEFAULT_PORT == 3000
        assert config.database_url is None
        assert config.agent_service_base_url == DEFAULT_AGENT_SERVICE_BASE_URL
        assert config.channel_service_base_url is None
        assert config.settlement_service_base_url is None
        assert config.execution_timeout_seconds == 10.0
        assert config.channel_timeout_seconds == 15.0
        assert config.settlement_timeout_seconds == 20.0
        assert config.remote_max_retries == 2
        assert config.default_collateral_usd == DEFAULT_COLLATERAL_USD == Decimal("50")
        assert config.default_max_duration_seconds == DEFAULT_MAX_DURATION_SECONDS == 600
        assert config.cors_origins == ["*"]

    def test_to_dict_hides_database_url(self, monkeypatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql://user:secret@db/sessions")

        data = OrchestratorConfig.from_environment().to_dict()

        assert data["database_configured"] is True
        assert "secret" not in str(data)


# =============================================================================
# Test Custom Values
# =============================================================================

class TestCustomValues:

    def test_values_read_from_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("APP_ENV", "Test")
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("AGENT_SERVICE_BASE_URL", "http://agents.internal:9000")
        monkeypatch.setenv("EXECUTION_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("REMOTE_MAX_RETRIES", "0")
        monkeypatch.setenv("DEFAULT_COLLATERAL_USD", "125.50")
        monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example")

        config = OrchestratorConfig.from_environment()

        assert config.app_env == "test"
        assert config.port == 8080
        assert config.agent_service_base_url == "http://agents.internal:9000"
        assert config.execution_timeout_seconds == 2.5
        assert config.remote_max_retries == 0
        assert config.default_collateral_usd == Decimal("125.50")
        assert config.cors_origins == ["https://a.example", "https://b.example"]

    def test_invalid_numbers_fall_back_to_defaults(self, monkeypatch) -> None:
        monkeypatch.setenv("PORT", "not-a-port")
        monkeypatch.setenv("EXECUTION_TIMEOUT_SECONDS", "fast")
        monkeypatch.setenv("DEFAULT_COLLATERAL_USD", "NaN")

        config = OrchestratorConfig.from_environment()

        assert config.port == DEFAULT_PORT
        assert config.execution_timeout_seconds == 10.0
        assert config.default_collateral_usd == DEFAULT_COLLATERAL_USD


# =============================================================================
# Test Validation (fail closed)
# =============================================================================

class TestValidation:

    def test_production_requires_all_service_urls(self, monkeypatch) -> None:
        monkeypatch.setenv("APP_ENV", "production")

        with pytest.raises(OrchestratorConfigurationError) as exc_info:
            OrchestratorConfig.from_environment()

        message = str(exc_info.value)
        assert exc_info.value.error_code == OrchestratorConfigErrorCode.CONFIG_MISSING == "CFG-040"
        assert "AGENT_SERVICE_BASE_URL" in message
        assert "CHANNEL_SERVICE_BASE_URL" in message
        assert "SETTLEMENT_SERVICE_BASE_URL" in message

    def test_production_with_all_urls_is_valid(self, monkeypatch) -> None:
        monkeypatch.setenv("APP_ENV", "production")
        monkeypatch.setenv("AGENT_SERVICE_BASE_URL", "https://exec.example")
        monkeypatch.setenv("CHANNEL_SERVICE_BASE_URL", "https://channels.example")
        monkeypatch.setenv("SETTLEMENT_SERVICE_BASE_URL", "https://settle.example")

        config = OrchestratorConfig.from_environment()

        assert config.is_production

    def test_unknown_app_env_rejected(self, monkeypatch) -> None:
        monkeypatch.setenv("APP_ENV", "staging")

        with pytest.raises(OrchestratorConfigurationError):
            OrchestratorConfig.from_environment()

    def test_non_http_url_rejected(self, monkeypatch) -> None:
        monkeypatch.setenv("CHANNEL_SERVICE_BASE_URL", "ftp://channels.example")

        with pytest.raises(OrchestratorConfigurationError):
            OrchestratorConfig.from_environment()

    def test_non_positive_defaults_rejected(self) -> None:
        config = OrchestratorConfig(default_collateral_usd=Decimal("0"), default_max_duration_seconds=0)

        with pytest.raises(OrchestratorConfigurationError) as exc_info:
            config.validate()

        assert "DEFAULT_COLLATERAL_USD" in str(exc_info.value)
        assert "DEFAULT_MAX_DURATION_SECONDS" in str(exc_info.value)

    def test_validate_false_skips_checks(self, monkeypatch) -> None:
        monkeypatch.setenv("APP_ENV", "production")

        config = OrchestratorConfig.from_environment(validate=False)

        assert config.agent_service_base_url is None


class TestSingleton:

    def test_get_returns_same_instance_until_reset(self) -> None:
        first = get_orchestrator_config()

        assert get_orchestrator_config() is first
        reset_orchestrator_config()
        assert get_orchestrator_config() is not first
