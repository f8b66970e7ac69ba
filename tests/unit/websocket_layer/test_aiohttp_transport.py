"""
Unit Tests for the aiohttp WebSocket transport

Tests frame handling and error mapping against mocked aiohttp objects.
"""

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from llm_reliability.core.exceptions import TransportError
from llm_reliability.websocket.transport import AiohttpWebSocketConnection, AiohttpWebSocketTransport

URL = "wss://realtime.example.com/v1/ws"


def _message(msg_type, data=None):
    return aiohttp.WSMessage(msg_type, data, None)


@pytest.fixture
def ws():
    mock = MagicMock(spec=aiohttp.ClientWebSocketResponse)
    mock.closed = False
    mock.close_code = None
    mock.send_str = AsyncMock()
    mock.receive = AsyncMock()
    mock.ping = AsyncMock()
    mock.close = AsyncMock()
    return mock


@pytest.mark.unit
class TestAiohttpWebSocketConnection:
    async def test_receive_text_frame(self, ws):
        ws.receive.return_value = _message(aiohttp.WSMsgType.TEXT, '{"type": "x"}')

        assert await AiohttpWebSocketConnection(ws, URL).receive_text() == '{"type": "x"}'

    async def test_receive_binary_frame_is_decoded(self, ws):
        ws.receive.return_value = _message(aiohttp.WSMsgType.BINARY, b'{"type": "x"}')

        assert await AiohttpWebSocketConnection(ws, URL).receive_text() == '{"type": "x"}'

    async def test_control_frames_are_skipped(self, ws):
        ws.receive.side_effect = [
            _message(aiohttp.WSMsgType.PONG, b""),
            _message(aiohttp.WSMsgType.TEXT, "{}"),
        ]

        assert await AiohttpWebSocketConnection(ws, URL).receive_text() == "{}"

    async def test_close_frame_raises_transport_error(self, ws):
        ws.receive.return_value = _message(aiohttp.WSMsgType.CLOSE, 1000)
        ws.close_code = 1000

        with pytest.raises(TransportError) as exc_info:
            await AiohttpWebSocketConnection(ws, URL).receive_text()

        assert exc_info.value.details["close_code"] == 1000

    async def test_error_frame_raises_transport_error(self, ws):
        ws.receive.return_value = _message(aiohttp.WSMsgType.ERROR)
        ws.exception.return_value = ConnectionResetError("reset")

        with pytest.raises(TransportError):
            await AiohttpWebSocketConnection(ws, URL).receive_text()

    async def test_send_failure_is_mapped(self, ws):
        ws.send_str.side_effect = ConnectionResetError("reset")

        with pytest.raises(TransportError) as exc_info:
            await AiohttpWebSocketConnection(ws, URL).send_text("{}")

        assert exc_info.value.details["operation"] == "send"

    async def test_ping_and_close_delegate(self, ws):
        connection = AiohttpWebSocketConnection(ws, URL)
        await connection.ping()
        await connection.close()

        ws.ping.assert_awaited_once()
        ws.close.assert_awaited_once()


@pytest.mark.unit
class TestAiohttpWebSocketTransport:
    async def test_connect_wraps_client_errors(self):
        session = MagicMock(spec=aiohttp.ClientSession)
        session.closed = False
        session.ws_connect = AsyncMock(side_effect=aiohttp.ClientConnectionError("refused"))

        transport = AiohttpWebSocketTransport(session)
        with pytest.raises(TransportError) as exc_info:
            await transport.connect(URL, {"Authorization": "Bearer k"})

        assert exc_info.value.details["url"] == URL

    async def test_connect_returns_connection(self, ws):
        session = MagicMock(spec=aiohttp.ClientSession)
        session.closed = False
        session.ws_connect = AsyncMock(return_value=ws)

        transport = AiohttpWebSocketTransport(session)
        connection = await transport.connect(URL)

        assert isinstance(connection, AiohttpWebSocketConnection)
        session.ws_connect.assert_awaited_once_with(URL, headers={}, autoping=True)

    async def test_aclose_leaves_injected_session_open(self):
        session = MagicMock(spec=aiohttp.ClientSession)
        session.closed = False
        session.close = AsyncMock()

        await AiohttpWebSocketTransport(session).aclose()

        session.close.assert_not_called()
