"""
Transport Exceptions

Errors raised while talking to a remote host over HTTP or WebSocket.

Author: System Architect
Date: 2025-12-10
"""

from typing import Any

from llm_reliability.core.exceptions.base import ReliabilityError


class TransportError(ReliabilityError):
    """
    Raised when a connection could not be established or dropped mid-call.

    Connection-level failures are recovered locally: the connection is still
    handed back to its pool, and the pool decides whether to retire it.
    """
    pass


class OperationTimeoutError(ReliabilityError):
    """
    Raised when a network operation exceeds its configured deadline.

    Deliberately not a subclass of TransportError so that callers can tell a
    slow peer from a dead one when deciding how to back off.
    """
    pass


class ResponseStatusError(ReliabilityError):
    """Raised when the remote host answers with an HTTP error status (>= 400)."""

    def __init__(
        self,
        message: str,
        status_code: int,
        request_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, request_id=request_id, details=details)
        self.status_code = status_code
        self.details.setdefault("status_code", status_code)

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500
