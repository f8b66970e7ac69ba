"""
Test Fixtures Package

Shared test utilities and helpers for consistent testing across all modules.
"""

from .http_factory import HttpTestFactory
from .websocket_factory import (
    FakeWebSocketConnection,
    FakeWebSocketTransport,
    SleepRecorder,
    WebSocketTestFactory,
)

__all__ = [
    "HttpTestFactory",
    "WebSocketTestFactory",
    "FakeWebSocketConnection",
    "FakeWebSocketTransport",
    "SleepRecorder",
]
