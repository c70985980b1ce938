"""Tests for configuration and logging setup."""

import logging

import structlog

from oee_monitor.config import Settings
from oee_monitor.errors import DeliveryError, SubscriptionNotFoundError
from oee_monitor.logging_setup import setup_logging


class TestSettings:
    """Tests for settings loading."""

    def test_defaults(self, monkeypatch):
        """Test defaults when no environment is set."""
        for name in ("WEBHOOK_MAX_CONCURRENT", "WEBHOOK_SOURCE", "WEBHOOK_USE_SQLITE"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env()

        assert settings.WEBHOOK_MAX_CONCURRENT == 5
        assert settings.WEBHOOK_SOURCE == "oee-monitor"
        assert settings.WEBHOOK_USE_SQLITE is False

    def test_from_env(self, monkeypatch):
        """Test values are read from the environment."""
        monkeypatch.setenv("WEBHOOK_MAX_CONCURRENT", "12")
        monkeypatch.setenv("WEBHOOK_SOURCE", "plant-2")
        monkeypatch.setenv("WEBHOOK_USE_SQLITE", "yes")
        monkeypatch.setenv("WEBHOOK_DB_PATH", "/tmp/hooks.db")

        settings = Settings.from_env()

        assert settings.WEBHOOK_MAX_CONCURRENT == 12
        assert settings.WEBHOOK_SOURCE == "plant-2"
        assert settings.WEBHOOK_USE_SQLITE is True
        assert settings.WEBHOOK_DB_PATH == "/tmp/hooks.db"

    def test_invalid_int_falls_back(self, monkeypatch):
        """Test a non-numeric value uses the default."""
        monkeypatch.setenv("WEBHOOK_MAX_CONCURRENT", "lots")

        assert Settings.from_env().WEBHOOK_MAX_CONCURRENT == 5

    def test_concurrency_at_least_one(self, monkeypatch):
        """Test the concurrency cap is clamped to one."""
        monkeypatch.setenv("WEBHOOK_MAX_CONCURRENT", "0")

        assert Settings.from_env().WEBHOOK_MAX_CONCURRENT == 1


class TestErrors:
    """Tests for error types."""

    def test_not_found_message(self):
        """Test the not-found message names the subscription."""
        error = SubscriptionNotFoundError("wh_1")

        assert str(error) == "Subscription wh_1 not found"
        assert error.to_dict()["details"] == {"subscription_id": "wh_1"}

    def test_delivery_error_to_dict(self):
        """Test delivery errors carry the status code."""
        error = DeliveryError("HTTP 502", status_code=502)

        data = error.to_dict()
        assert data["status_code"] == 502
        assert data["message"] == "HTTP 502"
        assert "retryable" not in data


class TestSetupLogging:
    """Tests for logging setup."""

    def test_configures_structlog(self):
        """Test structlog is configured and HTTP client logs are quieted."""
        try:
            setup_logging("warning")

            assert structlog.is_configured()
            assert logging.getLogger("httpx").level == logging.WARNING
            assert logging.getLogger("httpcore").level == logging.WARNING
        finally:
            structlog.reset_defaults()
