"""
Unit tests for the configuration system.

Tests the pydantic-settings based configuration with environment variable
support and validation.
"""

import pytest
from pydantic import ValidationError

from app.config import Settings, get_settings, settings


class TestSettingsDefaults:
    """Test default configuration values."""

    def test_server_defaults(self):
        config = Settings()
        assert config.HOST == "0.0.0.0"
        assert config.PORT == 8000

    def test_table_defaults(self):
        config = Settings()
        assert config.AUTHENTICATOR_METRICS_TABLE == "user_metrics"
        assert config.ONLINE_SESSIONS_TABLE == "user_online"

    def test_hub_defaults(self):
        config = Settings()
        assert config.HUB_SUBSCRIBER_QUEUE_SIZE == 256
        assert config.HUB_OVERFLOW_CAPACITY == 1024

    def test_aggregation_defaults(self):
        config = Settings()
        assert config.AGGREGATION_WINDOW_SECONDS == 10.0
        assert config.ONLINE_USER_INTERVAL_SECONDS == 10.0
        assert config.ONLINE_USER_STALE_AFTER_DAYS == 7

    def test_source_defaults(self):
        config = Settings()
        assert config.CDC_SOURCE_PATH is None
        assert config.CDC_SOURCE_FOLLOW is False
        assert config.SOURCE_STOP_TIMEOUT_SECONDS == 5.0

    def test_logging_defaults(self):
        config = Settings()
        assert config.LOG_JSON_FORMAT is False
        assert config.LOG_LEVEL == "INFO"


class TestEnvironmentOverrides:
    """Test environment variable overrides."""

    def test_override_tables(self, monkeypatch):
        monkeypatch.setenv("AUTHENTICATOR_METRICS_TABLE", "auth_counters")
        monkeypatch.setenv("ONLINE_SESSIONS_TABLE", "sessions")

        config = Settings()

        assert config.AUTHENTICATOR_METRICS_TABLE == "auth_counters"
        assert config.ONLINE_SESSIONS_TABLE == "sessions"

    def test_override_numbers_and_flags(self, monkeypatch):
        monkeypatch.setenv("HUB_SUBSCRIBER_QUEUE_SIZE", "16")
        monkeypatch.setenv("AGGREGATION_WINDOW_SECONDS", "0.5")
        monkeypatch.setenv("CDC_SOURCE_FOLLOW", "true")
        monkeypatch.setenv("CDC_SOURCE_PATH", "/tmp/changes.ndjson")

        config = Settings()

        assert config.HUB_SUBSCRIBER_QUEUE_SIZE == 16
        assert config.AGGREGATION_WINDOW_SECONDS == 0.5
        assert config.CDC_SOURCE_FOLLOW is True
        assert config.CDC_SOURCE_PATH == "/tmp/changes.ndjson"

    def test_names_are_case_sensitive(self, monkeypatch):
        monkeypatch.setenv("hub_subscriber_queue_size", "16")

        assert Settings().HUB_SUBSCRIBER_QUEUE_SIZE == 256


class TestValidation:
    """Test rejected configurations."""

    @pytest.mark.parametrize(
        "name, value",
        [
            ("HUB_SUBSCRIBER_QUEUE_SIZE", "0"),
            ("HUB_OVERFLOW_CAPACITY", "-1"),
            ("AGGREGATION_WINDOW_SECONDS", "0"),
            ("ONLINE_USER_INTERVAL_SECONDS", "-5"),
            ("ONLINE_USER_STALE_AFTER_DAYS", "0"),
            ("SOURCE_STOP_TIMEOUT_SECONDS", "0"),
        ],
    )
    def test_invalid_limits(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(ValidationError):
            Settings()

    def test_same_table_for_both_categories(self, monkeypatch):
        monkeypatch.setenv("ONLINE_SESSIONS_TABLE", "user_metrics")

        with pytest.raises(ValidationError) as exc_info:
            Settings()
        assert "must differ" in str(exc_info.value)

    def test_zero_overflow_allowed(self, monkeypatch):
        monkeypatch.setenv("HUB_OVERFLOW_CAPACITY", "0")

        assert Settings().HUB_OVERFLOW_CAPACITY == 0

    def test_non_numeric_rejected(self, monkeypatch):
        monkeypatch.setenv("PORT", "eighty")

        with pytest.raises(ValidationError):
            Settings()


def test_get_settings_returns_global():
    assert get_settings() is settings
