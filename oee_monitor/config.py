"""Application configuration settings.

This module provides centralized configuration management using environment
variables with sensible defaults.
"""

import os
from dataclasses import dataclass


def _get_bool_env(name: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set.

    Returns:
        Boolean value from environment.
    """
    value = os.getenv(name, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_int_env(name: str, default: int) -> int:
    """Get an integer value from environment variable.

    Falls back to the default when the variable is unset or not a number.
    """
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        WEBHOOK_MAX_CONCURRENT: Max in-flight webhook deliveries, system-wide.
        WEBHOOK_SOURCE: Source marker sent in payloads and headers.
        WEBHOOK_VERSION: Payload format version.
        WEBHOOK_USER_AGENT: User-Agent header for outbound deliveries.
        WEBHOOK_AUDIT_HISTORY_SIZE: Records kept by the in-memory audit log.
        WEBHOOK_USE_SQLITE: Back subscriptions and audit with SQLite.
        WEBHOOK_DB_PATH: SQLite database path.
        ENVIRONMENT: Deployment environment name.
        LOG_LEVEL: Logging level.
    """

    # Delivery engine
    WEBHOOK_MAX_CONCURRENT: int = 5
    WEBHOOK_SOURCE: str = "oee-monitor"
    WEBHOOK_VERSION: str = "1.0.0"
    WEBHOOK_USER_AGENT: str = "OEE-Monitor-Webhook/1.0.0"

    # Storage
    WEBHOOK_AUDIT_HISTORY_SIZE: int = 10000
    WEBHOOK_USE_SQLITE: bool = False
    WEBHOOK_DB_PATH: str = "data/webhooks.db"

    # Runtime
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Returns:
            Settings instance populated from environment.
        """
        return cls(
            WEBHOOK_MAX_CONCURRENT=max(1, _get_int_env("WEBHOOK_MAX_CONCURRENT", 5)),
            WEBHOOK_SOURCE=os.getenv("WEBHOOK_SOURCE", "oee-monitor"),
            WEBHOOK_VERSION=os.getenv("WEBHOOK_VERSION", "1.0.0"),
            WEBHOOK_USER_AGENT=os.getenv("WEBHOOK_USER_AGENT", "OEE-Monitor-Webhook/1.0.0"),
            WEBHOOK_AUDIT_HISTORY_SIZE=_get_int_env("WEBHOOK_AUDIT_HISTORY_SIZE", 10000),
            WEBHOOK_USE_SQLITE=_get_bool_env("WEBHOOK_USE_SQLITE", default=False),
            WEBHOOK_DB_PATH=os.getenv("WEBHOOK_DB_PATH", "data/webhooks.db"),
            ENVIRONMENT=os.getenv("ENVIRONMENT", "development"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        )


# Global settings instance
settings = Settings.from_env()
