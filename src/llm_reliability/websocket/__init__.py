"""
WebSocket Module

Self-healing WebSocket session for realtime LLM APIs.
"""

from llm_reliability.websocket.models import (
    BufferedMessage,
    ConnectionState,
    WebSocketConnectionStats,
    WebSocketReliabilityConfig,
)
from llm_reliability.websocket.reliable_session import (
    ReliableWebSocketSession,
    create_reliable_session,
    get_global_config,
    set_global_config,
)
from llm_reliability.websocket.transport import (
    AiohttpWebSocketConnection,
    AiohttpWebSocketTransport,
    WebSocketConnection,
    WebSocketTransport,
)

__all__ = [
    "BufferedMessage",
    "ConnectionState",
    "WebSocketConnectionStats",
    "WebSocketReliabilityConfig",
    "ReliableWebSocketSession",
    "create_reliable_session",
    "get_global_config",
    "set_global_config",
    "AiohttpWebSocketConnection",
    "AiohttpWebSocketTransport",
    "WebSocketConnection",
    "WebSocketTransport",
]
