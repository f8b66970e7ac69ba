"""
Circuit Breaker Exceptions

All exceptions related to circuit breaker operations

Author: System Architect
Date: 2025-12-10
"""

from llm_reliability.core.exceptions.base import ReliabilityError


class CircuitBreakerError(ReliabilityError):
    """Base exception for circuit breaker errors."""
    pass


class CircuitBreakerOpenError(CircuitBreakerError):
    """
    Raised when circuit breaker is open (fail fast).

    The guarded operation was NOT attempted. The circuit moves to half-open
    after the recovery timeout, at which point probe requests are let through.

    Common causes:
    - Too many consecutive transport failures or timeouts
    - Upstream answering with 5xx
    - Half-open probe limit reached
    """
    pass
