"""
WebSocket Transport Layer

Thin text-frame abstraction the reliable session is written against, plus the
default implementation on aiohttp's client WebSocket support.

The session only needs four operations from a live connection (send a text
frame, receive a text frame, ping, close), so any WebSocket library (or an
in-memory fake in tests) can be plugged in by implementing the two protocols
below. Implementations must raise ``TransportError`` for connection-level
failures; the session maps everything else to its own error kinds.

Author: System Architect
Date: 2025-12-11
"""

from collections.abc import Mapping
from typing import Protocol

import aiohttp

from llm_reliability.core.exceptions import TransportError
from llm_reliability.core.logging.logger import get_logger

logger = get_logger(__name__)


class WebSocketConnection(Protocol):
    """A single established WebSocket connection."""

    @property
    def closed(self) -> bool:
        ...

    async def send_text(self, data: str) -> None:
        ...

    async def receive_text(self) -> str:
        ...

    async def ping(self) -> None:
        ...

    async def close(self) -> None:
        ...


class WebSocketTransport(Protocol):
    """Factory of WebSocket connections."""

    async def connect(self, url: str, headers: Mapping[str, str] | None = None) -> WebSocketConnection:
        ...

    async def aclose(self) -> None:
        ...


class AiohttpWebSocketConnection:
    """``WebSocketConnection`` over ``aiohttp.ClientWebSocketResponse``."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse, url: str):
        self._ws = ws
        self.url = url

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send_text(self, data: str) -> None:
        try:
            await self._ws.send_str(data)
        except (aiohttp.ClientError, ConnectionError) as exc:
            raise TransportError.from_exception(exc, operation="send", url=self.url) from exc

    async def receive_text(self) -> str:
        while True:
            try:
                msg = await self._ws.receive()
            except (aiohttp.ClientError, ConnectionError) as exc:
                raise TransportError.from_exception(exc, operation="receive", url=self.url) from exc

            if msg.type == aiohttp.WSMsgType.TEXT:
                return msg.data
            if msg.type == aiohttp.WSMsgType.BINARY:
                return msg.data.decode("utf-8")
            if msg.type == aiohttp.WSMsgType.ERROR:
                cause = self._ws.exception()
                raise TransportError(
                    f"WebSocket error: {cause}",
                    details={"operation": "receive", "url": self.url, "original_error": type(cause).__name__},
                )
            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                raise TransportError(
                    "WebSocket closed by peer",
                    details={"operation": "receive", "url": self.url, "close_code": self._ws.close_code},
                )
            # PING/PONG are answered by aiohttp (autoping); keep reading

    async def ping(self) -> None:
        try:
            await self._ws.ping()
        except (aiohttp.ClientError, ConnectionError) as exc:
            raise TransportError.from_exception(exc, operation="ping", url=self.url) from exc

    async def close(self) -> None:
        try:
            await self._ws.close()
        except (aiohttp.ClientError, ConnectionError) as exc:
            raise TransportError.from_exception(exc, operation="close", url=self.url) from exc


class AiohttpWebSocketTransport:
    """
    Opens WebSocket connections through an ``aiohttp.ClientSession``.

    When no session is supplied one is created lazily and closed by ``aclose()``.
    """

    def __init__(self, session: aiohttp.ClientSession | None = None):
        self._session = session
        self._owns_session = session is None

    async def connect(self, url: str, headers: Mapping[str, str] | None = None) -> AiohttpWebSocketConnection:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        try:
            ws = await self._session.ws_connect(url, headers=dict(headers or {}), autoping=True)
        except (aiohttp.ClientError, OSError) as exc:
            raise TransportError.from_exception(
                exc, message=f"Failed to connect to {url}", operation="connect", url=url
            ) from exc

        logger.debug("WebSocket transport connected", url=url, stage="WS.2")
        return AiohttpWebSocketConnection(ws, url)

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
