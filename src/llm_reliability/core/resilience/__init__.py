"""
Resilience Module

Connection pooling and circuit breaking for outbound HTTP calls.

Components:
-----------
- **connection_manager.py**: Per-host pools of exclusively leased httpx clients
- **circuit_breaker.py**: Three-state breaker guarding async operations
"""

from llm_reliability.core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerStats,
    is_circuit_breaker_error,
)
from llm_reliability.core.resilience.connection_manager import (
    ConnectionConfig,
    ConnectionEfficiencyMetrics,
    ConnectionHealth,
    ConnectionManager,
    ManagedConnection,
    PoolStatistics,
    calculate_efficiency_score,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerStats",
    "is_circuit_breaker_error",
    "ConnectionConfig",
    "ConnectionEfficiencyMetrics",
    "ConnectionHealth",
    "ConnectionManager",
    "ManagedConnection",
    "PoolStatistics",
    "calculate_efficiency_score",
]
