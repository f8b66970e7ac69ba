"""
Reliable WebSocket Session Models

Configuration, connection state, statistics and the buffered outbound
message unit used by ``ReliableWebSocketSession``.

Author: System Architect
Date: 2025-12-11
"""

import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from llm_reliability.core.config.constants import (
    DEFAULT_WS_CONNECTION_QUALITY_THRESHOLD,
    DEFAULT_WS_CONNECTION_TIMEOUT,
    DEFAULT_WS_HEALTH_CHECK_INTERVAL,
    DEFAULT_WS_HEARTBEAT_INTERVAL,
    DEFAULT_WS_INITIAL_RECONNECTION_DELAY,
    DEFAULT_WS_MAX_MESSAGE_ATTEMPTS,
    DEFAULT_WS_MAX_RECONNECTION_ATTEMPTS,
    DEFAULT_WS_MAX_RECONNECTION_DELAY,
    DEFAULT_WS_MESSAGE_BATCH_SIZE,
    DEFAULT_WS_MESSAGE_BUFFER_SIZE,
    DEFAULT_WS_MESSAGE_PROCESSING_INTERVAL,
)
from llm_reliability.core.config.settings import get_settings


class ConnectionState(str, Enum):
    """
    Lifecycle of a reliable session.

    DISCONNECTED -> CONNECTING -> CONNECTED
    CONNECTED -> DISCONNECTED -> RECONNECTING -> CONNECTED | FAILED
    any -> CLOSING -> CLOSED
    """

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    CLOSING = "closing"
    CLOSED = "closed"


class WebSocketReliabilityConfig(BaseModel):
    """Reconnection policy, buffering and health monitoring of one session."""

    max_reconnection_attempts: int = Field(default=DEFAULT_WS_MAX_RECONNECTION_ATTEMPTS, gt=0)
    initial_reconnection_delay: float = Field(default=DEFAULT_WS_INITIAL_RECONNECTION_DELAY, gt=0)
    max_reconnection_delay: float = Field(default=DEFAULT_WS_MAX_RECONNECTION_DELAY, gt=0)
    connection_timeout: float = Field(default=DEFAULT_WS_CONNECTION_TIMEOUT, gt=0)
    heartbeat_interval: float = Field(default=DEFAULT_WS_HEARTBEAT_INTERVAL, gt=0)
    message_buffer_size: int = Field(default=DEFAULT_WS_MESSAGE_BUFFER_SIZE, gt=0)
    enable_auto_reconnect: bool = True
    enable_message_buffering: bool = True
    enable_heartbeat_monitoring: bool = True
    health_check_interval: float = Field(default=DEFAULT_WS_HEALTH_CHECK_INTERVAL, gt=0)
    connection_quality_threshold: float = Field(default=DEFAULT_WS_CONNECTION_QUALITY_THRESHOLD, ge=0, le=1)
    message_processing_interval: float = Field(default=DEFAULT_WS_MESSAGE_PROCESSING_INTERVAL, gt=0)
    message_batch_size: int = Field(default=DEFAULT_WS_MESSAGE_BATCH_SIZE, gt=0)
    max_message_attempts: int = Field(default=DEFAULT_WS_MAX_MESSAGE_ATTEMPTS, gt=0)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_delays(self):
        if self.initial_reconnection_delay > self.max_reconnection_delay:
            raise ValueError("initial_reconnection_delay cannot exceed max_reconnection_delay")
        return self

    @classmethod
    def from_settings(cls) -> "WebSocketReliabilityConfig":
        ws = get_settings().websocket
        return cls(
            max_reconnection_attempts=ws.WS_MAX_RECONNECTION_ATTEMPTS,
            initial_reconnection_delay=ws.WS_INITIAL_RECONNECTION_DELAY,
            max_reconnection_delay=ws.WS_MAX_RECONNECTION_DELAY,
            connection_timeout=ws.WS_CONNECTION_TIMEOUT,
            heartbeat_interval=ws.WS_HEARTBEAT_INTERVAL,
            message_buffer_size=ws.WS_MESSAGE_BUFFER_SIZE,
            enable_auto_reconnect=ws.WS_ENABLE_AUTO_RECONNECT,
            enable_message_buffering=ws.WS_ENABLE_MESSAGE_BUFFERING,
            enable_heartbeat_monitoring=ws.WS_ENABLE_HEARTBEAT_MONITORING,
            health_check_interval=ws.WS_HEALTH_CHECK_INTERVAL,
            connection_quality_threshold=ws.WS_CONNECTION_QUALITY_THRESHOLD,
        )


class WebSocketConnectionStats(BaseModel):
    """
    Counters of one session.

    ``connection_attempts`` counts every physical attempt. ``reconnections``
    counts successful connections that followed a failed attempt or an
    interruption, one per successful reconnection.
    """

    connection_attempts: int = 0
    successful_connections: int = 0
    failed_connections: int = 0
    reconnections: int = 0
    messages_sent: int = 0
    messages_received: int = 0
    message_send_failures: int = 0
    messages_dropped: int = 0
    connection_interruptions: int = 0
    connection_quality: float = 1.0
    last_heartbeat_timestamp: float | None = None
    total_bytes_sent: int = 0
    total_bytes_received: int = 0


@dataclass(eq=False)
class BufferedMessage:
    """Outbound event held by the session until sent or dropped."""

    event: Mapping[str, Any]
    payload: str
    priority: int = 1
    attempts: int = 0
    created_at: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: f"msg_{uuid.uuid4()}")
