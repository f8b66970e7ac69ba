"""
Connection Pool Exception Types.

Custom exceptions for connection pool management errors.
"""

from llm_reliability.core.exceptions.base import ReliabilityError


class ConnectionPoolError(ReliabilityError):
    """Base exception for connection pool errors."""

    def __init__(
        self,
        message: str = "Connection pool error",
        code: str = "CONNECTION_POOL_ERROR",
        details: dict | None = None,
    ):
        super().__init__(message=message, details=details)
        self.code = code


class ConnectionPoolExhaustedError(ConnectionPoolError):
    """Raised when no connection could be acquired under current limits."""

    def __init__(self, message: str | None = None, details: dict | None = None):
        super().__init__(
            message=message or "Connection pool exhausted - host at capacity",
            code="CONNECTION_POOL_EXHAUSTED",
            details=details,
        )
