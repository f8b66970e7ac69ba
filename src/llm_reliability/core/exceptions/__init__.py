"""
Exception Module

Structured exception hierarchy for the reliability core.
All exceptions are organized by theme.

Module Structure:
-----------------
- **base.py**: ReliabilityError base class + ConfigurationError
- **transport.py**: Transport, timeout and HTTP status errors
- **serialization.py**: Body encode/decode errors
- **circuit_breaker.py**: Circuit breaker exceptions
- **connection_pool.py**: Pool exhaustion
- **cache.py**: Response cache exceptions
- **websocket.py**: Reliable WebSocket session exceptions

Usage:
------
```python
from llm_reliability.core.exceptions import CircuitBreakerOpenError, TransportError

try:
    data = await client.execute_managed_request("GET", "/v1/models")
except CircuitBreakerOpenError:
    ...  # fail fast, nothing was sent
except TransportError:
    ...  # caller decides whether to retry
```

Author: System Architect
Date: 2025-12-10
"""

from llm_reliability.core.exceptions.base import ConfigurationError, ReliabilityError
from llm_reliability.core.exceptions.cache import CacheEntryTooLargeError, CacheError
from llm_reliability.core.exceptions.circuit_breaker import (
    CircuitBreakerError,
    CircuitBreakerOpenError,
)
from llm_reliability.core.exceptions.connection_pool import (
    ConnectionPoolError,
    ConnectionPoolExhaustedError,
)
from llm_reliability.core.exceptions.serialization import SerializationError
from llm_reliability.core.exceptions.transport import (
    OperationTimeoutError,
    ResponseStatusError,
    TransportError,
)
from llm_reliability.core.exceptions.websocket import (
    NoActiveConnectionError,
    ReconnectionExhaustedError,
    SessionClosedError,
    WebSocketError,
)

__all__ = [
    # Base
    "ReliabilityError",
    "ConfigurationError",
    # Transport
    "TransportError",
    "OperationTimeoutError",
    "ResponseStatusError",
    # Serialization
    "SerializationError",
    # Circuit Breaker
    "CircuitBreakerError",
    "CircuitBreakerOpenError",
    # Connection Pool
    "ConnectionPoolError",
    "ConnectionPoolExhaustedError",
    # Cache
    "CacheError",
    "CacheEntryTooLargeError",
    # WebSocket
    "WebSocketError",
    "ReconnectionExhaustedError",
    "NoActiveConnectionError",
    "SessionClosedError",
]
