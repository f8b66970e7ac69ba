"""
Unit Tests for Configuration Settings

Tests the settings loading, validation, and default values.
"""

import pytest
from pydantic import ValidationError

from llm_reliability.core.config.constants import (
    DEFAULT_CB_FAILURE_THRESHOLD,
    DEFAULT_MAX_CONNECTIONS_PER_HOST,
    DEFAULT_WS_MAX_RECONNECTION_ATTEMPTS,
    CircuitState,
)
from llm_reliability.core.config.settings import Settings, get_settings, reload_settings
from llm_reliability.core.exceptions import ConfigurationError


@pytest.mark.unit
class TestSettingsInitialization:
    """Test Settings class initialization and validation."""

    def test_settings_has_required_sections(self):
        settings = Settings()

        assert hasattr(settings, "connection_pool")
        assert hasattr(settings, "cache")
        assert hasattr(settings, "circuit_breaker")
        assert hasattr(settings, "metrics")
        assert hasattr(settings, "websocket")
        assert hasattr(settings, "logging")
        assert hasattr(settings, "app")

    def test_defaults_match_documented_constants(self):
        settings = Settings()

        assert settings.connection_pool.POOL_MAX_CONNECTIONS_PER_HOST == DEFAULT_MAX_CONNECTIONS_PER_HOST
        assert settings.circuit_breaker.CB_FAILURE_THRESHOLD == DEFAULT_CB_FAILURE_THRESHOLD
        assert settings.websocket.WS_MAX_RECONNECTION_ATTEMPTS == DEFAULT_WS_MAX_RECONNECTION_ATTEMPTS
        assert settings.ENABLE_CACHING is True
        assert settings.ENABLE_CIRCUIT_BREAKER is True
        assert settings.ENABLE_METRICS is True

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("CB_FAILURE_THRESHOLD", "7")
        monkeypatch.setenv("CACHE_DEFAULT_TTL", "12.5")

        settings = reload_settings()

        assert settings.circuit_breaker.CB_FAILURE_THRESHOLD == 7
        assert settings.cache.CACHE_DEFAULT_TTL == 12.5

    def test_min_connections_above_max_rejected(self):
        with pytest.raises(ValidationError):
            Settings(POOL_MIN_CONNECTIONS_PER_HOST=10, POOL_MAX_CONNECTIONS_PER_HOST=5)

    def test_ws_initial_delay_above_max_rejected(self):
        with pytest.raises(ValidationError):
            Settings(WS_INITIAL_RECONNECTION_DELAY=60.0, WS_MAX_RECONNECTION_DELAY=30.0)

    def test_non_positive_threshold_rejected(self):
        with pytest.raises(ValidationError):
            Settings(CB_FAILURE_THRESHOLD=0)

    def test_invalid_log_level_rejected(self):
        with pytest.raises(ValidationError):
            Settings(LOG_LEVEL="LOUD")

    def test_log_level_is_normalized(self):
        assert Settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"


@pytest.mark.unit
class TestSettingsSingleton:
    def test_get_settings_returns_same_instance(self):
        assert get_settings() is get_settings()

    def test_reload_settings_replaces_instance(self):
        first = get_settings()
        second = reload_settings()

        assert first is not second
        assert get_settings() is second

    def test_test_environment_from_env(self):
        assert get_settings().app.ENVIRONMENT == "test"

    def test_invalid_environment_raises_configuration_error(self, monkeypatch):
        previous = get_settings()
        monkeypatch.setenv("LOG_LEVEL", "LOUD")

        with pytest.raises(ConfigurationError) as exc_info:
            reload_settings()

        assert exc_info.value.details["errors"][0]["field"] == "LOG_LEVEL"
        assert isinstance(exc_info.value.__cause__, ValidationError)
        assert get_settings() is previous


@pytest.mark.unit
class TestConstants:
    def test_circuit_states_are_strings(self):
        assert CircuitState.CLOSED.value == "closed"
        assert CircuitState.OPEN.value == "open"
        assert CircuitState.HALF_OPEN.value == "half_open"
