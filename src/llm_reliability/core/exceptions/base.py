"""
Base Exception Class

Root of the error taxonomy. Transport, timeout, serialization, circuit-open,
pool-exhaustion and websocket errors each live in their own module and all
derive from ReliabilityError, so callers can catch one type at the boundary.

Author: System Architect
Date: 2025-12-10
"""

from typing import Any


class ReliabilityError(Exception):
    """
    Base exception for all reliability-core errors.

    Every error raised by this package derives from it, which gives:
    - Consistent error handling at the call site
    - Request ID correlation
    - Structured error logging

    Attributes:
        message: Error message
        request_id: Request ID for correlation (if available)
        details: Additional error details (operation, host, underlying cause...)

    Example:
        raise TransportError(
            "Failed to reach api.openai.com",
            details={"operation": "execute_managed_request", "host": "api.openai.com"},
        )
    """

    def __init__(
        self, message: str, request_id: str | None = None, details: dict[str, Any] | None = None
    ):
        self.message = message
        self.request_id = request_id
        self.details = (details or {}).copy()
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for logging/API responses.

        Returns:
            Dict with error_type, message, request_id, and details
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "request_id": self.request_id,
            "details": self.details,
        }

    def with_context(self, **context) -> "ReliabilityError":
        """
        Add additional context to the error details.

        Returns:
            Self (for method chaining)
        """
        self.details.update(context)
        return self

    def __repr__(self) -> str:
        details_str = f", details={self.details}" if self.details else ""
        request_id_str = f", request_id='{self.request_id}'" if self.request_id else ""
        return f"{self.__class__.__name__}(message='{self.message}'{request_id_str}{details_str})"

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        message: str | None = None,
        request_id: str | None = None,
        **details,
    ) -> "ReliabilityError":
        """
        Create an error of this class from another exception.

        Useful for wrapping third-party exceptions (httpx, aiohttp, orjson)
        with operation context.

        Example:
            >>> try:
            ...     await client.send(request)
            ... except httpx.TransportError as e:
            ...     raise TransportError.from_exception(
            ...         e, operation="send", host="api.openai.com"
            ...     ) from e
        """
        error_message = message or str(exc) or exc.__class__.__name__
        error_details = {
            "original_error": exc.__class__.__name__,
            "original_message": str(exc),
            **details,
        }
        return cls(error_message, request_id=request_id, details=error_details)


class ConfigurationError(ReliabilityError):
    """Raised when configuration is invalid or missing."""
    pass
