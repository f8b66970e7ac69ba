"""
WebSocket Session Exceptions

Author: System Architect
Date: 2025-12-10
"""

from llm_reliability.core.exceptions.base import ReliabilityError


class WebSocketError(ReliabilityError):
    """Base exception for reliable WebSocket session errors."""
    pass


class ReconnectionExhaustedError(WebSocketError):
    """
    Raised when the session failed to (re)connect after the maximum number
    of configured attempts. The session is left in the FAILED state.
    """
    pass


class NoActiveConnectionError(WebSocketError):
    """Raised when an operation needs a live connection and none is established."""
    pass


class SessionClosedError(WebSocketError):
    """Raised when an operation is attempted on a closed session."""
    pass
