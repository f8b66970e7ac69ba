"""
WebSocket Test Factory

In-memory implementations of the WebSocket transport protocols with
controllable failures, plus a sleep recorder for backoff assertions.
"""

import asyncio

from llm_reliability.core.exceptions import TransportError


class FakeWebSocketConnection:
    """Connection that records sent frames and replays queued inbound frames."""

    def __init__(self, url: str = "wss://example.test/ws"):
        self.url = url
        self.sent: list[str] = []
        self.inbound: asyncio.Queue[str | Exception] = asyncio.Queue()
        self.fail_sends = False
        self.fail_pings = False
        self.ping_count = 0
        self.close_count = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send_text(self, data: str) -> None:
        if self.fail_sends or self._closed:
            raise TransportError("send failed", details={"operation": "send"})
        self.sent.append(data)

    async def receive_text(self) -> str:
        item = await self.inbound.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def ping(self) -> None:
        if self.fail_pings:
            raise TransportError("ping failed", details={"operation": "ping"})
        self.ping_count += 1

    async def close(self) -> None:
        self.close_count += 1
        self._closed = True

    def push(self, frame: str) -> None:
        self.inbound.put_nowait(frame)

    def drop(self) -> None:
        """Simulate the peer going away: pending and future receives fail."""
        self.inbound.put_nowait(TransportError("connection reset", details={"operation": "receive"}))


class FakeWebSocketTransport:
    """
    Transport whose first ``fail_times`` connects fail with ``TransportError``.
    Raising ``fail_times`` later makes further connects fail too.

    Successful connects hand out fresh ``FakeWebSocketConnection`` objects,
    all kept in ``connections``. With ``fail_pings`` every connection it hands
    out rejects heartbeats from the start.
    """

    def __init__(self, fail_times: int = 0, connect_delay: float = 0.0, fail_pings: bool = False):
        self.fail_times = fail_times
        self.connect_delay = connect_delay
        self.fail_pings = fail_pings
        self.connect_calls = 0
        self.connections: list[FakeWebSocketConnection] = []
        self.closed = False

    async def connect(self, url: str, headers=None) -> FakeWebSocketConnection:
        self.connect_calls += 1
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_calls <= self.fail_times:
            raise TransportError(f"connect attempt {self.connect_calls} refused", details={"url": url})
        connection = FakeWebSocketConnection(url)
        connection.fail_pings = self.fail_pings
        self.connections.append(connection)
        return connection

    async def aclose(self) -> None:
        self.closed = True

    @property
    def current(self) -> FakeWebSocketConnection:
        return self.connections[-1]


class SleepRecorder:
    """Awaitable sleep replacement that records requested delays."""

    def __init__(self, real: bool = False):
        self.delays: list[float] = []
        self._real = real

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(delay if self._real else 0)


class WebSocketTestFactory:
    """Factory for WebSocket test doubles."""

    @staticmethod
    def transport(fail_times: int = 0, connect_delay: float = 0.0, fail_pings: bool = False) -> FakeWebSocketTransport:
        return FakeWebSocketTransport(fail_times=fail_times, connect_delay=connect_delay, fail_pings=fail_pings)

    @staticmethod
    def sleep_recorder(real: bool = False) -> SleepRecorder:
        return SleepRecorder(real=real)
