"""
============================================================================
Agent Session Orchestrator - Configuration
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: Default collateral parsed as decimal.Decimal

This module provides configuration management for the orchestrator:
- Environment variable parsing with type safety
- Development defaults (local stand-ins for channel and settlement)
- Fail-closed behavior in production on missing service URLs (CFG-040)

ENVIRONMENT VARIABLES:
    - APP_ENV: development | production | test (default: development)
    - PORT: HTTP port (default: 3000)
    - DATABASE_URL: SQLAlchemy URL (unset → in-memory stores)
    - AGENT_SERVICE_BASE_URL: Execution service (dev default http://localhost:3001)
    - CHANNEL_SERVICE_BASE_URL: Channel service (unset in dev → local stand-in)
    - SETTLEMENT_SERVICE_BASE_URL: Settlement recorder (unset in dev → local stand-in)
    - EXECUTION_TIMEOUT_SECONDS: (default: 10)
    - CHANNEL_TIMEOUT_SECONDS: (default: 15)
    - SETTLEMENT_TIMEOUT_SECONDS: (default: 20)
    - REMOTE_MAX_RETRIES: Extra attempts for idempotent GETs (default: 2)
    - DEFAULT_COLLATERAL_USD: (default: 50)
    - DEFAULT_MAX_DURATION_SECONDS: (default: 600)
    - CORS_ORIGINS: Comma-separated origins (default: *)

ERROR CODES:
    - CFG-040: Required configuration missing or invalid

============================================================================
"""

from decimal import Decimal, InvalidOperation
from typing import Optional, List
from dataclasses import dataclass, field
import logging
import os

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Error Codes
# =============================================================================

class OrchestratorConfigErrorCode:
    """Configuration error codes for audit logging."""
    CONFIG_MISSING = "CFG-040"


# =============================================================================
# Default Values
# =============================================================================

ENV_DEVELOPMENT = "development"
ENV_PRODUCTION = "production"
ENV_TEST = "test"
VALID_ENVIRONMENTS = (ENV_DEVELOPMENT, ENV_PRODUCTION, ENV_TEST)

DEFAULT_PORT = 3000
DEFAULT_AGENT_SERVICE_BASE_URL = "http://localhost:3001"
DEFAULT_EXECUTION_TIMEOUT_SECONDS = 10.0
DEFAULT_CHANNEL_TIMEOUT_SECONDS = 15.0
DEFAULT_SETTLEMENT_TIMEOUT_SECONDS = 20.0
DEFAULT_REMOTE_MAX_RETRIES = 2
DEFAULT_COLLATERAL_USD = Decimal("50")
DEFAULT_MAX_DURATION_SECONDS = 600


# =============================================================================
# Configuration Validation Exception
# =============================================================================

class OrchestratorConfigurationError(Exception):
    """
    Raised when configuration is invalid or missing.

    Raised during startup, enforcing fail-closed behavior per CFG-040.
    """

    def __init__(self, message: str, error_code: str = OrchestratorConfigErrorCode.CONFIG_MISSING):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


# =============================================================================
# Environment Parsing Helpers
# =============================================================================

def _env_str(name: str) -> Optional[str]:
    value = os.environ.get(name, "").strip()
    return value or None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, str(default))
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning(f"[ORCH-CONFIG] Invalid {name} value: {raw}, using default: {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, str(default))
    try:
        return float(raw.strip())
    except ValueError:
        logger.warning(f"[ORCH-CONFIG] Invalid {name} value: {raw}, using default: {default}")
        return default


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = os.environ.get(name, str(default))
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        value = None
    if value is None or not value.is_finite():
        logger.warning(f"[ORCH-CONFIG] Invalid {name} value: {raw}, using default: {default}")
        return default
    return value


# =============================================================================
# OrchestratorConfig Class
# =============================================================================

@dataclass
class OrchestratorConfig:
    """
    Orchestrator configuration.

    Reliability Level: L6 Critical
    Input Constraints: Service URLs required when app_env is production
    Side Effects: Logs configuration on load
    """

    app_env: str = ENV_DEVELOPMENT
    port: int = DEFAULT_PORT
    database_url: Optional[str] = None
    agent_service_base_url: Optional[str] = DEFAULT_AGENT_SERVICE_BASE_URL
    channel_service_base_url: Optional[str] = None
    settlement_service_base_url: Optional[str] = None
    execution_timeout_seconds: float = DEFAULT_EXECUTION_TIMEOUT_SECONDS
    channel_timeout_seconds: float = DEFAULT_CHANNEL_TIMEOUT_SECONDS
    settlement_timeout_seconds: float = DEFAULT_SETTLEMENT_TIMEOUT_SECONDS
    remote_max_retries: int = DEFAULT_REMOTE_MAX_RETRIES
    default_collateral_usd: Decimal = field(default_factory=lambda: DEFAULT_COLLATERAL_USD)
    default_max_duration_seconds: int = DEFAULT_MAX_DURATION_SECONDS
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def is_production(self) -> bool:
        return self.app_env == ENV_PRODUCTION

    def validate(self) -> None:
        """
        Validate configuration completeness.

        Raises:
            OrchestratorConfigurationError: If configuration is missing or invalid
        """
        errors: List[str] = []

        if self.app_env not in VALID_ENVIRONMENTS:
            errors.append(f"APP_ENV must be one of {list(VALID_ENVIRONMENTS)}, got: {self.app_env}")

        if not 0 < self.port < 65536:
            errors.append(f"PORT must be between 1 and 65535, got: {self.port}")

        for name, value in (
            ("EXECUTION_TIMEOUT_SECONDS", self.execution_timeout_seconds),
            ("CHANNEL_TIMEOUT_SECONDS", self.channel_timeout_seconds),
            ("SETTLEMENT_TIMEOUT_SECONDS", self.settlement_timeout_seconds),
        ):
            if value <= 0:
                errors.append(f"{name} must be positive, got: {value}")

        if self.remote_max_retries < 0:
            errors.append(f"REMOTE_MAX_RETRIES must be non-negative, got: {self.remote_max_retries}")

        if self.default_collateral_usd <= 0:
            errors.append(f"DEFAULT_COLLATERAL_USD must be positive, got: {self.default_collateral_usd}")

        if self.default_max_duration_seconds <= 0:
            errors.append(
                f"DEFAULT_MAX_DURATION_SECONDS must be positive, got: {self.default_max_duration_seconds}"
            )

        if not self.agent_service_base_url:
            errors.append("AGENT_SERVICE_BASE_URL must be set")

        if self.is_production:
            if not self.channel_service_base_url:
                errors.append("CHANNEL_SERVICE_BASE_URL must be set in production")
            if not self.settlement_service_base_url:
                errors.append("SETTLEMENT_SERVICE_BASE_URL must be set in production")

        for name, url in (
            ("AGENT_SERVICE_BASE_URL", self.agent_service_base_url),
            ("CHANNEL_SERVICE_BASE_URL", self.channel_service_base_url),
            ("SETTLEMENT_SERVICE_BASE_URL", self.settlement_service_base_url),
        ):
            if url and not url.startswith(("http://", "https://")):
                errors.append(f"{name} must be an http(s) URL, got: {url}")

        if errors:
            error_msg = "Orchestrator configuration validation failed: " + "; ".join(errors)
            logger.error(f"[{OrchestratorConfigErrorCode.CONFIG_MISSING}] {error_msg}")
            raise OrchestratorConfigurationError(error_msg)

        logger.info(
            f"[ORCH-CONFIG] Configuration validated | "
            f"app_env={self.app_env} | "
            f"store={'sql' if self.database_url else 'memory'} | "
            f"channel={'http' if self.channel_service_base_url else 'local'} | "
            f"settlement={'http' if self.settlement_service_base_url else 'local'}"
        )

    @classmethod
    def from_environment(cls, validate: bool = True) -> "OrchestratorConfig":
        """
        Load configuration from environment variables.

        Outside production an unset AGENT_SERVICE_BASE_URL falls back to
        http://localhost:3001; in production it stays unset and fails
        validation.

        Raises:
            OrchestratorConfigurationError: If validation is requested and fails
        """
        app_env = (os.environ.get("APP_ENV", ENV_DEVELOPMENT).strip().lower() or ENV_DEVELOPMENT)

        agent_url = _env_str("AGENT_SERVICE_BASE_URL")
        if agent_url is None and app_env != ENV_PRODUCTION:
            agent_url = DEFAULT_AGENT_SERVICE_BASE_URL

        origins = [
            o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()
        ] or ["*"]

        config = cls(
            app_env=app_env,
            port=_env_int("PORT", DEFAULT_PORT),
            database_url=_env_str("DATABASE_URL"),
            agent_service_base_url=agent_url,
            channel_service_base_url=_env_str("CHANNEL_SERVICE_BASE_URL"),
            settlement_service_base_url=_env_str("SETTLEMENT_SERVICE_BASE_URL"),
            execution_timeout_seconds=_env_float(
                "EXECUTION_TIMEOUT_SECONDS", DEFAULT_EXECUTION_TIMEOUT_SECONDS
            ),
            channel_timeout_seconds=_env_float(
                "CHANNEL_TIMEOUT_SECONDS", DEFAULT_CHANNEL_TIMEOUT_SECONDS
            ),
            settlement_timeout_seconds=_env_float(
                "SETTLEMENT_TIMEOUT_SECONDS", DEFAULT_SETTLEMENT_TIMEOUT_SECONDS
            ),
            remote_max_retries=_env_int("REMOTE_MAX_RETRIES", DEFAULT_REMOTE_MAX_RETRIES),
            default_collateral_usd=_env_decimal("DEFAULT_COLLATERAL_USD", DEFAULT_COLLATERAL_USD),
            default_max_duration_seconds=_env_int(
                "DEFAULT_MAX_DURATION_SECONDS", DEFAULT_MAX_DURATION_SECONDS
            ),
            cors_origins=origins,
        )

        logger.info(
            f"[ORCH-CONFIG] Loading configuration from environment | "
            f"APP_ENV={config.app_env} | PORT={config.port} | "
            f"AGENT_SERVICE_BASE_URL={config.agent_service_base_url}"
        )

        if validate:
            config.validate()

        return config

    def to_dict(self) -> dict:
        """Configuration as a dictionary; DATABASE_URL reported only as set/unset."""
        return {
            "app_env": self.app_env,
            "port": self.port,
            "database_configured": self.database_url is not None,
            "agent_service_base_url": self.agent_service_base_url,
            "channel_service_base_url": self.channel_service_base_url,
            "settlement_service_base_url": self.settlement_service_base_url,
            "execution_timeout_seconds": self.execution_timeout_seconds,
            "channel_timeout_seconds": self.channel_timeout_seconds,
            "settlement_timeout_seconds": self.settlement_timeout_seconds,
            "remote_max_retries": self.remote_max_retries,
            "default_collateral_usd": str(self.default_collateral_usd),
            "default_max_duration_seconds": self.default_max_duration_seconds,
            "cors_origins": list(self.cors_origins),
        }


# =============================================================================
# Module-Level Configuration Instance
# =============================================================================

# Global configuration instance (lazy-loaded)
_config_instance: Optional[OrchestratorConfig] = None


def get_orchestrator_config(validate: bool = True) -> OrchestratorConfig:
    """
    Get the global orchestrator configuration instance.

    Loads from the environment on first call.
    """
    global _config_instance

    if _config_instance is None:
        _config_instance = OrchestratorConfig.from_environment(validate=validate)

    return _config_instance


def reset_orchestrator_config() -> None:
    """Reset the global configuration instance (tests)."""
    global _config_instance
    _config_instance = None


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "OrchestratorConfigErrorCode",
    "OrchestratorConfigurationError",
    "OrchestratorConfig",
    "get_orchestrator_config",
    "reset_orchestrator_config",
    "ENV_DEVELOPMENT",
    "ENV_PRODUCTION",
    "ENV_TEST",
    "DEFAULT_COLLATERAL_USD",
    "DEFAULT_MAX_DURATION_SECONDS",
]
