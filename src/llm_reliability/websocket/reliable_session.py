"""
Reliable WebSocket Session

Persistent duplex connection with automatic reconnection, at-least-once
outbound buffering and heartbeat-based health monitoring.

STAGE-WS: WebSocket session lifecycle
--------------------------------------
WS.1: State transitions
WS.2: Connection attempts and exponential backoff
WS.3: Outbound send / buffering
WS.4: Inbound receive
WS.5: Heartbeat
WS.6: Health scoring
WS.7: Buffered message processing
WS.8: Failure handling and reconnection
WS.9: Shutdown

Reconnection uses tenacity's exponential wait: the delay before attempt n+1 is
``min(initial_delay * 2**(n-1), max_delay)``, so successive delays never
decrease and never exceed the cap. Only one physical connection attempt runs
at a time (single-permit semaphore).

Background tasks (heartbeat, health, message processing) run while CONNECTED
and are cancelled on failure handling and on ``close()``. A reconnection the
health loop starts runs in its own task, which ``close()`` also cancels; no
connection attempt starts once the session is closing. Python has no
deterministic destructor, so the owner must call ``close()`` or use the
session as an async context manager.

Author: System Architect
Date: 2025-12-11
"""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import orjson
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from llm_reliability.core.config.constants import HEARTBEAT_TOLERANCE_MULTIPLIER
from llm_reliability.core.exceptions import (
    NoActiveConnectionError,
    OperationTimeoutError,
    ReconnectionExhaustedError,
    SerializationError,
    SessionClosedError,
    TransportError,
)
from llm_reliability.core.logging.logger import get_logger
from llm_reliability.websocket.models import (
    BufferedMessage,
    ConnectionState,
    WebSocketConnectionStats,
    WebSocketReliabilityConfig,
)
from llm_reliability.websocket.transport import (
    AiohttpWebSocketTransport,
    WebSocketConnection,
    WebSocketTransport,
)

logger = get_logger(__name__)

_CONNECTION_ERRORS = (TransportError, OperationTimeoutError)

StateListener = Callable[[ConnectionState, ConnectionState], None]


class ReliableWebSocketSession:
    """
    Self-healing WebSocket session for JSON events.

    Usage:
        async with ReliableWebSocketSession("wss://api.openai.com/v1/realtime") as session:
            await session.send_event_reliable({"type": "session.update"})
            event = await session.recv_event_reliable()
    """

    def __init__(
        self,
        url: str,
        config: WebSocketReliabilityConfig | None = None,
        *,
        transport: WebSocketTransport | None = None,
        headers: Mapping[str, str] | None = None,
        on_state_change: StateListener | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.url = url
        self.config = config or get_global_config()
        self._transport: WebSocketTransport = transport or AiohttpWebSocketTransport()
        self._owns_transport = transport is None
        self._headers = dict(headers or {})
        self._on_state_change = on_state_change
        self._sleep = sleep

        self._connection: WebSocketConnection | None = None
        self._state = ConnectionState.DISCONNECTED
        self._stats = WebSocketConnectionStats()
        self._buffer: deque[BufferedMessage] = deque()
        self._connect_semaphore = asyncio.Semaphore(1)
        self._tasks: list[asyncio.Task] = []
        self._reconnect_task: asyncio.Task | None = None

        self._reconnection_attempts = 0
        self._pending_reconnection = False
        self._last_connected_at: float | None = None
        self._last_heartbeat: float | None = None

    # ========================================================================
    # Accessors
    # ========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def buffered_message_count(self) -> int:
        return len(self._buffer)

    @property
    def reconnection_attempts(self) -> int:
        """Attempts made in the current (or last) connection cycle."""
        return self._reconnection_attempts

    @property
    def last_connected_at(self) -> float | None:
        return self._last_connected_at

    def get_stats(self) -> WebSocketConnectionStats:
        return self._stats.model_copy()

    def is_connection_healthy(self) -> bool:
        if self._state != ConnectionState.CONNECTED:
            return False
        if self._last_heartbeat is None:
            return True
        tolerance = self.config.heartbeat_interval * HEARTBEAT_TOLERANCE_MULTIPLIER
        return time.monotonic() - self._last_heartbeat < tolerance

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def __aenter__(self) -> "ReliableWebSocketSession":
        await self.connect_reliable()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def connect_reliable(self) -> None:
        """
        Connect, retrying with exponential backoff.

        Raises:
            ReconnectionExhaustedError: Every attempt failed (state FAILED)
            TransportError / OperationTimeoutError: The single attempt failed
                and auto-reconnect is disabled (state FAILED)
            SessionClosedError: The session was closed
        """
        self._ensure_open("connect_reliable")
        async with self._connect_semaphore:
            if self._state == ConnectionState.CONNECTED and self._connection is not None:
                return
            self._ensure_open("connect_reliable")
            await self._connect_with_backoff()

    async def close(self) -> None:
        """Stop background tasks, drop the connection and move to CLOSED. Idempotent."""
        if self._state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return

        self._set_state(ConnectionState.CLOSING)
        await self._stop_background_tasks()
        await self._cancel_reconnect_task()

        connection, self._connection = self._connection, None
        if connection is not None:
            await self._close_connection(connection)
        if self._owns_transport:
            await self._transport.aclose()

        self._set_state(ConnectionState.CLOSED)
        logger.info(
            "WebSocket session closed",
            url=self.url,
            undelivered_messages=len(self._buffer),
            stage="WS.9",
        )

    # ========================================================================
    # Data plane
    # ========================================================================

    async def send_event_reliable(self, event: Mapping[str, Any]) -> None:
        """
        Buffer ``event`` (when buffering is enabled) and try to send it now.

        While disconnected the event simply stays buffered. A send failure is
        counted, triggers failure handling (reconnection when enabled) and
        leaves the event buffered for the background loop to retry.

        Raises:
            SerializationError: ``event`` is not JSON-serializable
            NoActiveConnectionError: Not connected and buffering is disabled
            ReconnectionExhaustedError: The send failed and reconnecting failed too
        """
        self._ensure_open("send_event_reliable")
        payload = self._encode(event)

        message: BufferedMessage | None = None
        if self.config.enable_message_buffering:
            message = BufferedMessage(event=event, payload=payload)
            self._enqueue(message)

        connection = self._connection
        if self._state != ConnectionState.CONNECTED or connection is None:
            if message is None:
                raise NoActiveConnectionError(
                    "Cannot send: no active WebSocket connection and buffering is disabled",
                    details={"operation": "send_event_reliable", "url": self.url, "state": self._state.value},
                )
            logger.debug("Event buffered while disconnected", message_id=message.id, stage="WS.3")
            return

        if message is not None:
            message.attempts += 1
        try:
            await self._send_payload(connection, payload)
        except _CONNECTION_ERRORS as exc:
            self._stats.message_send_failures += 1
            logger.warning(
                "Immediate send failed",
                url=self.url,
                error=str(exc),
                buffered=message is not None,
                stage="WS.3",
            )
            await self._handle_connection_failure(connection, exc)
            if message is None:
                raise
            return

        if message is not None:
            self._remove_buffered(message)

    async def recv_event_reliable(self) -> dict[str, Any]:
        """
        Receive the next event.

        On a connection failure with auto-reconnect enabled, reconnects and
        retries the receive once against the new connection.

        Raises:
            NoActiveConnectionError: Not connected
            TransportError / OperationTimeoutError: Receive failed (after the
                single retry, or immediately when auto-reconnect is disabled)
            ReconnectionExhaustedError: Reconnecting after the failure failed
            SerializationError: The frame was not a JSON object
        """
        self._ensure_open("recv_event_reliable")
        connection = self._require_connection("recv_event_reliable")

        try:
            return await self._receive(connection)
        except _CONNECTION_ERRORS as exc:
            logger.warning("Receive failed", url=self.url, error=str(exc), stage="WS.4")
            await self._handle_connection_failure(connection, exc)
            if not self.config.enable_auto_reconnect:
                raise

        connection = self._require_connection("recv_event_reliable")
        return await self._receive(connection)

    async def flush_message_buffer(self) -> int:
        """
        Try to send every buffered message now.

        Returns:
            Number of messages actually sent. Undelivered messages stay
            buffered (or are dropped once they reach the attempt cap).
        """
        connection = self._connection
        if self._state != ConnectionState.CONNECTED or connection is None:
            return 0

        pending = deque(self._buffer)
        self._buffer.clear()
        sent = await self._drain(connection, pending)
        logger.debug("Message buffer flushed", sent=sent, remaining=len(self._buffer), stage="WS.7")
        return sent

    # ========================================================================
    # Connection establishment
    # ========================================================================

    async def _connect_with_backoff(self) -> None:
        cfg = self.config
        max_attempts = cfg.max_reconnection_attempts if cfg.enable_auto_reconnect else 1

        self._reconnection_attempts = 0
        self._set_state(
            ConnectionState.RECONNECTING if self._pending_reconnection else ConnectionState.CONNECTING
        )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(
                multiplier=cfg.initial_reconnection_delay,
                min=cfg.initial_reconnection_delay,
                max=cfg.max_reconnection_delay,
            ),
            retry=retry_if_exception_type(_CONNECTION_ERRORS),
            before_sleep=self._before_backoff,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    connection = await self._attempt_connection()
        except _CONNECTION_ERRORS as exc:
            self._set_state(ConnectionState.FAILED)
            logger.error(
                "WebSocket connection failed",
                url=self.url,
                attempts=self._reconnection_attempts,
                error=str(exc),
                stage="WS.2",
            )
            if not cfg.enable_auto_reconnect:
                raise
            raise ReconnectionExhaustedError(
                f"Failed to connect to {self.url} after {self._reconnection_attempts} attempts",
                details={
                    "operation": "connect_reliable",
                    "url": self.url,
                    "attempts": self._reconnection_attempts,
                    "last_error": str(exc),
                    "last_error_type": type(exc).__name__,
                },
            ) from exc
        except BaseException:
            self._set_state(ConnectionState.FAILED)
            raise

        if self._state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            # close() ran while the attempt was in flight
            await self._close_connection(connection)
            raise SessionClosedError(
                "WebSocket session was closed while connecting",
                details={"operation": "connect_reliable", "url": self.url},
            )

        self._on_connected(connection)

    async def _attempt_connection(self) -> WebSocketConnection:
        self._ensure_open("connect_reliable")
        self._stats.connection_attempts += 1
        self._reconnection_attempts += 1
        timeout = self.config.connection_timeout

        try:
            return await asyncio.wait_for(self._transport.connect(self.url, self._headers), timeout=timeout)
        except asyncio.TimeoutError as exc:
            self._record_failed_attempt()
            raise OperationTimeoutError.from_exception(
                exc,
                message=f"Connecting to {self.url} timed out after {timeout}s",
                operation="connect",
                url=self.url,
                timeout=timeout,
            ) from exc
        except TransportError:
            self._record_failed_attempt()
            raise

    def _record_failed_attempt(self) -> None:
        self._stats.failed_connections += 1
        self._pending_reconnection = True

    def _before_backoff(self, retry_state: RetryCallState) -> None:
        self._set_state(ConnectionState.RECONNECTING)
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "WebSocket connection attempt failed, backing off",
            url=self.url,
            attempt=retry_state.attempt_number,
            max_attempts=self.config.max_reconnection_attempts,
            delay_s=delay,
            error=str(error),
            stage="WS.2",
        )

    def _on_connected(self, connection: WebSocketConnection) -> None:
        self._connection = connection
        self._last_connected_at = time.time()
        # A completed handshake is the first liveness signal
        self._last_heartbeat = time.monotonic() if self.config.enable_heartbeat_monitoring else None
        self._stats.successful_connections += 1
        self._stats.connection_quality = 1.0
        if self._pending_reconnection:
            self._stats.reconnections += 1
            self._pending_reconnection = False

        self._set_state(ConnectionState.CONNECTED)
        logger.info(
            "WebSocket connected",
            url=self.url,
            attempts=self._reconnection_attempts,
            reconnections=self._stats.reconnections,
            buffered_messages=len(self._buffer),
            stage="WS.2",
        )
        self._reconnection_attempts = 0
        self._start_background_tasks()

    # ========================================================================
    # Failure handling
    # ========================================================================

    async def _handle_connection_failure(self, failed: WebSocketConnection, error: BaseException | str) -> None:
        """
        Tear down ``failed`` and reconnect if enabled.

        When another caller already replaced ``failed``, waits for that
        caller's reconnection instead. No-op while the session is closing.
        """
        if self._state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return
        if failed is not self._connection:
            if self.config.enable_auto_reconnect:
                await self.connect_reliable()
            return

        self._stats.connection_interruptions += 1
        self._connection = None
        self._pending_reconnection = True
        self._set_state(ConnectionState.DISCONNECTED)
        logger.warning(
            "WebSocket connection lost",
            url=self.url,
            reason=str(error),
            interruptions=self._stats.connection_interruptions,
            stage="WS.8",
        )

        await self._stop_background_tasks()
        await self._close_connection(failed)

        if not self.config.enable_auto_reconnect:
            self._set_state(ConnectionState.FAILED)
            return

        await self.connect_reliable()

    # ========================================================================
    # Background loops
    # ========================================================================

    def _start_background_tasks(self) -> None:
        if self.config.enable_heartbeat_monitoring:
            self._tasks.append(asyncio.create_task(self._heartbeat_loop()))
        self._tasks.append(asyncio.create_task(self._health_loop()))
        self._tasks.append(asyncio.create_task(self._message_processing_loop()))

    async def _stop_background_tasks(self) -> None:
        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current]
        self._tasks = []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _heartbeat_loop(self) -> None:
        """
        STAGE-WS.5: Ping on every tick and record the heartbeat on success.
        A failed ping leaves the timestamp stale for the health loop to notice.
        """
        while self._state == ConnectionState.CONNECTED:
            connection = self._connection
            if connection is None:
                return
            try:
                await connection.ping()
            except _CONNECTION_ERRORS as exc:
                logger.warning("Heartbeat ping failed", url=self.url, error=str(exc), stage="WS.5")
            else:
                self._last_heartbeat = time.monotonic()
                self._stats.last_heartbeat_timestamp = time.time()
            await asyncio.sleep(self.config.heartbeat_interval)

    async def _health_loop(self) -> None:
        """
        STAGE-WS.6: Smooth connection quality toward 1.0 on healthy ticks and
        toward 0.0 otherwise; below the threshold the connection is recycled.
        """
        while True:
            await asyncio.sleep(self.config.health_check_interval)
            if self._state != ConnectionState.CONNECTED:
                return

            quality = self._stats.connection_quality
            if self.is_connection_healthy():
                quality = min(1.0, quality * 0.9 + 0.1)
            else:
                quality = quality * 0.9
            self._stats.connection_quality = quality

            if quality < self.config.connection_quality_threshold:
                logger.warning(
                    "Connection quality below threshold",
                    url=self.url,
                    quality=round(quality, 3),
                    threshold=self.config.connection_quality_threshold,
                    stage="WS.6",
                )
                connection = self._connection
                if connection is not None:
                    self._schedule_recovery(connection, "connection quality degraded")
                return

    def _schedule_recovery(self, failed: WebSocketConnection, reason: str) -> None:
        """Run failure handling in a task that ``close()`` can cancel."""
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._recover(failed, reason))

    async def _recover(self, failed: WebSocketConnection, reason: str) -> None:
        """STAGE-WS.8: Background reconnection. Nobody awaits it, so outcomes are logged."""
        try:
            await self._handle_connection_failure(failed, reason)
        except ReconnectionExhaustedError as exc:
            # The FAILED state is what callers observe
            logger.error("Background reconnection failed", url=self.url, reason=reason, error=exc.message, stage="WS.8")
        except SessionClosedError:
            logger.debug("Background reconnection stopped by close", url=self.url, stage="WS.8")

    async def _cancel_reconnect_task(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _message_processing_loop(self) -> None:
        """STAGE-WS.7: Periodically retry a bounded batch of buffered messages."""
        while True:
            await asyncio.sleep(self.config.message_processing_interval)
            if self._state != ConnectionState.CONNECTED:
                return
            connection = self._connection
            if connection is None or not self._buffer:
                continue

            batch_size = min(self.config.message_batch_size, len(self._buffer))
            pending = deque(self._buffer.popleft() for _ in range(batch_size))
            await self._drain(connection, pending)

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _drain(self, connection: WebSocketConnection, pending: deque[BufferedMessage]) -> int:
        """
        Send ``pending`` in order on ``connection``.

        Failed messages are requeued at the back (or dropped at the attempt
        cap). Messages not attempted, including on cancellation, go back to the
        front of the buffer.
        """
        sent = 0
        try:
            while pending:
                if self._state != ConnectionState.CONNECTED or self._connection is not connection:
                    break
                message = pending[0]
                message.attempts += 1
                try:
                    await self._send_payload(connection, message.payload)
                except _CONNECTION_ERRORS as exc:
                    pending.popleft()
                    self._stats.message_send_failures += 1
                    self._requeue_or_drop(message, exc)
                else:
                    pending.popleft()
                    sent += 1
        finally:
            self._buffer.extendleft(reversed(pending))
        return sent

    async def _send_payload(self, connection: WebSocketConnection, payload: str) -> None:
        timeout = self.config.connection_timeout
        try:
            await asyncio.wait_for(connection.send_text(payload), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise OperationTimeoutError.from_exception(
                exc, message=f"Send timed out after {timeout}s", operation="send", url=self.url
            ) from exc
        self._stats.messages_sent += 1
        self._stats.total_bytes_sent += len(payload.encode("utf-8"))

    async def _receive(self, connection: WebSocketConnection) -> dict[str, Any]:
        text = await connection.receive_text()
        self._stats.total_bytes_received += len(text.encode("utf-8"))
        try:
            event = orjson.loads(text)
        except orjson.JSONDecodeError as exc:
            raise SerializationError.from_exception(
                exc, message="Received frame is not valid JSON", operation="recv_event_reliable", url=self.url
            ) from exc
        if not isinstance(event, dict):
            raise SerializationError(
                "Received frame is not a JSON object",
                details={"operation": "recv_event_reliable", "url": self.url, "type": type(event).__name__},
            )
        self._stats.messages_received += 1
        return event

    def _encode(self, event: Mapping[str, Any]) -> str:
        try:
            return orjson.dumps(event).decode("utf-8")
        except TypeError as exc:
            raise SerializationError.from_exception(
                exc, message="Event is not JSON-serializable", operation="send_event_reliable", url=self.url
            ) from exc

    def _enqueue(self, message: BufferedMessage) -> None:
        if len(self._buffer) >= self.config.message_buffer_size:
            dropped = self._buffer.popleft()
            self._stats.messages_dropped += 1
            logger.warning(
                "Message buffer full, dropping oldest message",
                dropped_message_id=dropped.id,
                buffer_size=self.config.message_buffer_size,
                stage="WS.3",
            )
        self._buffer.append(message)

    def _remove_buffered(self, message: BufferedMessage) -> None:
        try:
            self._buffer.remove(message)
        except ValueError:
            pass  # already taken by the processing loop

    def _requeue_or_drop(self, message: BufferedMessage, error: BaseException) -> None:
        if message.attempts < self.config.max_message_attempts:
            self._enqueue(message)
            return
        self._stats.messages_dropped += 1
        logger.error(
            "Dropping message after max attempts",
            message_id=message.id,
            attempts=message.attempts,
            error=str(error),
            stage="WS.7",
        )

    async def _close_connection(self, connection: WebSocketConnection) -> None:
        try:
            await connection.close()
        except TransportError as exc:
            logger.warning("Error closing WebSocket connection", url=self.url, error=exc.message, stage="WS.9")

    def _require_connection(self, operation: str) -> WebSocketConnection:
        connection = self._connection
        if self._state != ConnectionState.CONNECTED or connection is None:
            raise NoActiveConnectionError(
                "No active WebSocket connection",
                details={"operation": operation, "url": self.url, "state": self._state.value},
            )
        return connection

    def _ensure_open(self, operation: str) -> None:
        if self._state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            raise SessionClosedError(
                "WebSocket session is closed", details={"operation": operation, "url": self.url}
            )

    def _set_state(self, new_state: ConnectionState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        if old_state in (ConnectionState.CLOSING, ConnectionState.CLOSED) and new_state != ConnectionState.CLOSED:
            return
        self._state = new_state
        logger.info(
            "WebSocket state changed",
            url=self.url,
            from_state=old_state.value,
            to_state=new_state.value,
            stage="WS.1",
        )
        if self._on_state_change is not None:
            self._on_state_change(old_state, new_state)


# ============================================================================
# Module-level configuration
# ============================================================================

_global_config: WebSocketReliabilityConfig | None = None


def get_global_config() -> WebSocketReliabilityConfig:
    """Default session configuration, loaded from settings on first use."""
    global _global_config

    if _global_config is None:
        _global_config = WebSocketReliabilityConfig.from_settings()

    return _global_config


def set_global_config(config: WebSocketReliabilityConfig) -> None:
    global _global_config
    _global_config = config


def create_reliable_session(
    url: str,
    config: WebSocketReliabilityConfig | None = None,
    **kwargs: Any,
) -> ReliableWebSocketSession:
    """Create a session using ``config`` or the global default configuration."""
    return ReliableWebSocketSession(url, config or get_global_config(), **kwargs)
