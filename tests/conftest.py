"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.
"""

import pytest

from tests.test_fixtures import HttpTestFactory, WebSocketTestFactory

# ============================================================================
# Pytest Configuration
# ============================================================================

# pytest-asyncio is loaded via pyproject.toml configuration (asyncio_mode = "auto")


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    """
    Reload settings around every test so environment overrides never leak.

    Also resets the module-level WebSocket default configuration.
    """
    from llm_reliability.core.config.settings import reload_settings
    from llm_reliability.websocket import reliable_session

    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setattr(reliable_session, "_global_config", None)
    reload_settings()
    yield
    monkeypatch.undo()
    reload_settings()


# ============================================================================
# HTTP Fixtures
# ============================================================================


@pytest.fixture
def request_log():
    """Requests seen by a mock handler, in order."""
    return []


@pytest.fixture
def json_client_factory(request_log):
    """ClientFactory whose clients answer every request with ``{"ok": true}``."""
    return HttpTestFactory.client_factory(HttpTestFactory.json_handler(calls=request_log))


@pytest.fixture
def fast_connection_config():
    """Small pool with short timeouts for deterministic tests."""
    from llm_reliability.core.resilience.connection_manager import ConnectionConfig

    return ConnectionConfig(
        max_connections_per_host=2,
        min_connections_per_host=0,
        idle_timeout=60.0,
        health_check_interval=3600.0,
        connection_wait_timeout=0.2,
        request_timeout=2.0,
        connect_timeout=1.0,
    )


# ============================================================================
# WebSocket Fixtures
# ============================================================================


@pytest.fixture
def ws_transport():
    """In-memory transport that always connects."""
    return WebSocketTestFactory.transport()


@pytest.fixture
def sleep_recorder():
    """Backoff sleep replacement that records delays without waiting."""
    return WebSocketTestFactory.sleep_recorder()


@pytest.fixture
def fast_ws_config():
    """Reliability config with millisecond-scale delays and slow background loops."""
    from llm_reliability.websocket.models import WebSocketReliabilityConfig

    return WebSocketReliabilityConfig(
        max_reconnection_attempts=3,
        initial_reconnection_delay=0.01,
        max_reconnection_delay=0.1,
        connection_timeout=1.0,
        heartbeat_interval=60.0,
        message_buffer_size=100,
        health_check_interval=60.0,
        message_processing_interval=60.0,
    )
