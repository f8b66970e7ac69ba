"""
System Constants and Enumerations

This module defines the defaults and enumerations shared by the reliability
core: connection pooling, response caching, circuit breaking, metrics and
the reliable WebSocket session.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for every documented default
- Settings and runtime config models both read from here
- Type-safe enums for state management

Author: System Architect
Date: 2025-12-10
"""

from enum import Enum

# ============================================================================
# Circuit Breaker States
# ============================================================================


class CircuitState(str, Enum):
    """
    Circuit breaker states.

    CLOSED: Normal operation, requests allowed
    OPEN: Failing fast, requests blocked
    HALF_OPEN: Testing recovery, limited requests
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# ============================================================================
# Connection Pool Defaults
# ============================================================================

DEFAULT_MAX_CONNECTIONS_PER_HOST = 20
DEFAULT_MIN_CONNECTIONS_PER_HOST = 2
DEFAULT_IDLE_TIMEOUT = 120.0  # seconds
DEFAULT_HEALTH_CHECK_INTERVAL = 30.0  # seconds
DEFAULT_CONNECTION_WAIT_TIMEOUT = 10.0  # seconds
DEFAULT_REQUEST_TIMEOUT = 300.0  # seconds
DEFAULT_CONNECT_TIMEOUT = 30.0  # seconds
DEFAULT_MAX_CONNECTION_FAILURES = 3

# Health score a pooled connection must exceed to be handed out again
MIN_REUSABLE_HEALTH_SCORE = 0.5


# ============================================================================
# Response Cache Defaults
# ============================================================================

DEFAULT_CACHE_MAX_ENTRIES = 1000
DEFAULT_CACHE_TTL = 300.0  # seconds
DEFAULT_CACHE_MAX_RESPONSE_SIZE = 1024 * 1024  # 1 MiB
DEFAULT_CACHE_CLEANUP_INTERVAL = 60.0  # seconds


# ============================================================================
# Circuit Breaker Defaults
# ============================================================================

DEFAULT_CB_FAILURE_THRESHOLD = 5
DEFAULT_CB_RECOVERY_TIMEOUT = 30.0  # seconds
DEFAULT_CB_SUCCESS_THRESHOLD = 3
DEFAULT_CB_HALF_OPEN_MAX_REQUESTS = 5
DEFAULT_CB_HALF_OPEN_TIMEOUT = 10.0  # seconds


# ============================================================================
# Metrics Defaults
# ============================================================================

DEFAULT_METRICS_MAX_ENTRIES = 10_000
DEFAULT_METRICS_COLLECTION_INTERVAL = 10.0  # seconds
DEFAULT_METRICS_RETENTION_PERIOD = 3600.0  # seconds
DEFAULT_METRICS_NAMESPACE = "llm_client"


# ============================================================================
# WebSocket Reliability Defaults
# ============================================================================

DEFAULT_WS_MAX_RECONNECTION_ATTEMPTS = 5
DEFAULT_WS_INITIAL_RECONNECTION_DELAY = 1.0  # seconds
DEFAULT_WS_MAX_RECONNECTION_DELAY = 30.0  # seconds
DEFAULT_WS_CONNECTION_TIMEOUT = 10.0  # seconds
DEFAULT_WS_HEARTBEAT_INTERVAL = 30.0  # seconds
DEFAULT_WS_MESSAGE_BUFFER_SIZE = 1000
DEFAULT_WS_HEALTH_CHECK_INTERVAL = 5.0  # seconds
DEFAULT_WS_CONNECTION_QUALITY_THRESHOLD = 0.8
DEFAULT_WS_MESSAGE_PROCESSING_INTERVAL = 0.1  # seconds
DEFAULT_WS_MESSAGE_BATCH_SIZE = 10
DEFAULT_WS_MAX_MESSAGE_ATTEMPTS = 3

# A connection is considered stale once this many heartbeat intervals pass
# without a heartbeat being recorded.
HEARTBEAT_TOLERANCE_MULTIPLIER = 3
