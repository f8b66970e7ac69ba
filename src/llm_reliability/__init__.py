"""
LLM Transport Reliability

Reliability core for LLM API clients: pooled HTTP connections, response
caching, circuit breaking, metrics and a self-healing WebSocket session.

Usage:
------
```python
from llm_reliability import ConnectionConfig, EnhancedClient

async with EnhancedClient(
    "https://api.openai.com/v1",
    connection_config=ConnectionConfig(),
) as client:
    models = await client.get_cached("/models", ttl=60)
```
"""

from llm_reliability.client import EnhancedClient, PerformanceDashboard
from llm_reliability.core.config import get_settings, reload_settings
from llm_reliability.core.exceptions import (
    CacheEntryTooLargeError,
    CircuitBreakerOpenError,
    ConnectionPoolExhaustedError,
    NoActiveConnectionError,
    OperationTimeoutError,
    ReconnectionExhaustedError,
    ReliabilityError,
    ResponseStatusError,
    SerializationError,
    SessionClosedError,
    TransportError,
)
from llm_reliability.core.logging import get_logger, setup_logging
from llm_reliability.core.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    ConnectionConfig,
    ConnectionManager,
)
from llm_reliability.infrastructure.cache import CacheConfig, ResponseCache
from llm_reliability.infrastructure.monitoring import MetricsCollector, MetricsConfig
from llm_reliability.websocket import (
    ConnectionState,
    ReliableWebSocketSession,
    WebSocketReliabilityConfig,
)

__version__ = "1.0.0"

__all__ = [
    "EnhancedClient",
    "PerformanceDashboard",
    "ConnectionManager",
    "ConnectionConfig",
    "ResponseCache",
    "CacheConfig",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "MetricsCollector",
    "MetricsConfig",
    "ReliableWebSocketSession",
    "WebSocketReliabilityConfig",
    "ConnectionState",
    "ReliabilityError",
    "TransportError",
    "OperationTimeoutError",
    "ResponseStatusError",
    "SerializationError",
    "CircuitBreakerOpenError",
    "ConnectionPoolExhaustedError",
    "CacheEntryTooLargeError",
    "ReconnectionExhaustedError",
    "NoActiveConnectionError",
    "SessionClosedError",
    "get_settings",
    "reload_settings",
    "get_logger",
    "setup_logging",
]
