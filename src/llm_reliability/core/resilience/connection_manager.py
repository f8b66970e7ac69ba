"""
Connection Manager for Pooled HTTP Connections.

This module provides per-host connection pooling for the enhanced client with:
- Exclusive loan of one connection per in-flight request
- Health scoring driven by request outcomes
- Bounded growth with a wait-then-fail exhaustion policy
- Background maintenance (idle eviction, unhealthy eviction, warming)
- Efficiency metrics for dashboards and analysis reports

STAGE-CP: Connection Pool Management
-------------------------------------
CP.1: Pool creation
CP.2: Connection acquisition
CP.3: Connection creation
CP.4: Connection release
CP.5: Background maintenance
CP.6: Shutdown

Each ``ManagedConnection`` wraps its own ``httpx.AsyncClient`` limited to a
single underlying socket, so "one connection" really is one transport handle.

Author: System Architect
Date: 2025-12-10
"""

import asyncio
import time
import uuid
from collections import deque
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum

import httpx
from pydantic import BaseModel, ConfigDict, Field, model_validator

from llm_reliability.core.config.constants import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_CONNECTION_WAIT_TIMEOUT,
    DEFAULT_HEALTH_CHECK_INTERVAL,
    DEFAULT_IDLE_TIMEOUT,
    DEFAULT_MAX_CONNECTION_FAILURES,
    DEFAULT_MAX_CONNECTIONS_PER_HOST,
    DEFAULT_MIN_CONNECTIONS_PER_HOST,
    DEFAULT_REQUEST_TIMEOUT,
    MIN_REUSABLE_HEALTH_SCORE,
)
from llm_reliability.core.config.settings import get_settings
from llm_reliability.core.exceptions import (
    ConnectionPoolError,
    ConnectionPoolExhaustedError,
    TransportError,
)
from llm_reliability.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Configuration
# ============================================================================


class ConnectionConfig(BaseModel):
    """Per-host pool limits, timeouts and maintenance policy."""

    max_connections_per_host: int = Field(default=DEFAULT_MAX_CONNECTIONS_PER_HOST, gt=0)
    min_connections_per_host: int = Field(default=DEFAULT_MIN_CONNECTIONS_PER_HOST, ge=0)
    idle_timeout: float = Field(default=DEFAULT_IDLE_TIMEOUT, gt=0)
    health_check_interval: float = Field(default=DEFAULT_HEALTH_CHECK_INTERVAL, gt=0)
    connection_wait_timeout: float = Field(default=DEFAULT_CONNECTION_WAIT_TIMEOUT, gt=0)
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    connect_timeout: float = Field(default=DEFAULT_CONNECT_TIMEOUT, gt=0)
    max_connection_failures: int = Field(default=DEFAULT_MAX_CONNECTION_FAILURES, gt=0)
    enable_connection_warming: bool = True

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.min_connections_per_host > self.max_connections_per_host:
            raise ValueError("min_connections_per_host cannot exceed max_connections_per_host")
        return self

    @classmethod
    def from_settings(cls) -> "ConnectionConfig":
        pool = get_settings().connection_pool
        return cls(
            max_connections_per_host=pool.POOL_MAX_CONNECTIONS_PER_HOST,
            min_connections_per_host=pool.POOL_MIN_CONNECTIONS_PER_HOST,
            idle_timeout=pool.POOL_IDLE_TIMEOUT,
            health_check_interval=pool.POOL_HEALTH_CHECK_INTERVAL,
            connection_wait_timeout=pool.POOL_CONNECTION_WAIT_TIMEOUT,
            request_timeout=pool.POOL_REQUEST_TIMEOUT,
            connect_timeout=pool.POOL_CONNECT_TIMEOUT,
            max_connection_failures=pool.POOL_MAX_CONNECTION_FAILURES,
            enable_connection_warming=pool.POOL_ENABLE_CONNECTION_WARMING,
        )


ClientFactory = Callable[[str, ConnectionConfig], httpx.AsyncClient]


def default_client_factory(host: str, config: ConnectionConfig) -> httpx.AsyncClient:
    """Build a single-socket httpx client for ``host``."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.request_timeout, connect=config.connect_timeout),
        limits=httpx.Limits(
            max_connections=1,
            max_keepalive_connections=1,
            keepalive_expiry=config.idle_timeout,
        ),
    )


# ============================================================================
# Connection
# ============================================================================


class ConnectionHealth(str, Enum):
    """Health of a single pooled connection."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_HEALTH_SCORES = {
    ConnectionHealth.HEALTHY: 1.0,
    ConnectionHealth.DEGRADED: 0.6,
    ConnectionHealth.UNHEALTHY: 0.1,
}


@dataclass(eq=False)
class ManagedConnection:
    """
    One pooled transport handle to a specific host.

    Owned by its pool while idle, loaned to exactly one caller while a request
    is in flight. Outcome counters feed the pool's eviction decisions.
    """

    client: httpx.AsyncClient
    host: str
    max_failures: int = DEFAULT_MAX_CONNECTION_FAILURES
    id: str = field(default_factory=lambda: f"conn_{uuid.uuid4().hex[:12]}")
    created_at: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)
    consecutive_failures: int = 0
    total_successes: int = 0
    total_failures: int = 0
    avg_response_time: float = 0.0
    health: ConnectionHealth = ConnectionHealth.HEALTHY

    @property
    def requests_served(self) -> int:
        return self.total_successes + self.total_failures

    @property
    def health_score(self) -> float:
        return _HEALTH_SCORES[self.health]

    @property
    def is_reusable(self) -> bool:
        return self.health_score > MIN_REUSABLE_HEALTH_SCORE and not self.client.is_closed

    def record_success(self, response_time: float) -> None:
        """Record a completed request and its latency (seconds)."""
        self.total_successes += 1
        n = self.total_successes
        self.avg_response_time = (self.avg_response_time * (n - 1) + response_time) / n
        self.consecutive_failures = 0
        self.health = ConnectionHealth.HEALTHY
        self.last_used = time.monotonic()

    def record_failure(self) -> None:
        self.total_failures += 1
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.max_failures:
            self.health = ConnectionHealth.UNHEALTHY
        else:
            self.health = ConnectionHealth.DEGRADED
        self.last_used = time.monotonic()

    def is_idle(self, idle_timeout: float, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        return now - self.last_used > idle_timeout

    async def aclose(self) -> None:
        await self.client.aclose()


# ============================================================================
# Statistics models
# ============================================================================


class PoolStatistics(BaseModel):
    """Read-only view of one host pool."""

    host: str
    available_connections: int
    in_use_connections: int
    total_connections_created: int
    total_connections_destroyed: int
    total_requests_served: int
    peak_connections: int
    current_utilization: float


class ConnectionEfficiencyMetrics(BaseModel):
    """Aggregate efficiency view across every host pool."""

    active_pools: int
    total_connections_created: int
    total_requests_served: int
    connection_reuse_ratio: float
    average_pool_utilization: float
    efficiency_score: float


def calculate_efficiency_score(reuse_ratio: float, utilization: float) -> float:
    """
    Score pool efficiency in [0, 1].

    Reuse of 10-50 requests per connection and 60-80% utilization are ideal.
    Less reuse means connection churn; far more means stale long-lived sockets.
    """
    if 10.0 <= reuse_ratio <= 50.0:
        reuse_score = 1.0
    elif reuse_ratio > 50.0:
        reuse_score = 1.0 - min((reuse_ratio - 50.0) / 100.0, 0.5)
    else:
        reuse_score = reuse_ratio / 10.0

    if 0.6 <= utilization <= 0.8:
        utilization_score = 1.0
    elif utilization > 0.8:
        utilization_score = max(0.0, 1.0 - (utilization - 0.8) * 2.5)
    else:
        utilization_score = utilization / 0.6

    return (reuse_score + utilization_score) / 2.0


# ============================================================================
# Host pool
# ============================================================================


class HostConnectionPool:
    """
    Connections to a single host.

    Idle connections live in a deque; loaned ones are tracked by id so that a
    connection can never be handed to two callers at once. Waiters park on a
    condition that is notified whenever a connection comes back.
    """

    def __init__(self, host: str, config: ConnectionConfig, client_factory: ClientFactory):
        self.host = host
        self.config = config
        self._client_factory = client_factory
        self._idle: deque[ManagedConnection] = deque()
        self._in_use: dict[str, ManagedConnection] = {}
        self._condition = asyncio.Condition()
        self._closed = False

        self._created = 0
        self._destroyed = 0
        self._requests_served = 0
        self._peak = 0

    @property
    def total_connections(self) -> int:
        return len(self._idle) + len(self._in_use)

    async def acquire(self) -> ManagedConnection:
        """
        Loan out the healthiest idle connection, creating one if allowed.

        Raises:
            ConnectionPoolExhaustedError: No connection freed up within
                ``connection_wait_timeout`` while at ``max_connections_per_host``
            TransportError: The underlying client could not be constructed
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.connection_wait_timeout
        stale: list[ManagedConnection] = []

        try:
            async with self._condition:
                while True:
                    if self._closed:
                        raise ConnectionPoolError(
                            f"Connection pool for {self.host} is closed",
                            details={"operation": "get_connection", "host": self.host},
                        )

                    conn = self._take_best_idle(stale)
                    if conn is None and self.total_connections < self.config.max_connections_per_host:
                        conn = self._create_connection()

                    if conn is not None:
                        self._loan(conn)
                        return conn

                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        self._raise_exhausted()
                    logger.debug(
                        "Waiting for a free connection",
                        host=self.host,
                        in_use=len(self._in_use),
                        remaining_s=round(remaining, 3),
                        stage="CP.2",
                    )
                    try:
                        await asyncio.wait_for(self._condition.wait(), timeout=remaining)
                    except asyncio.TimeoutError:
                        self._raise_exhausted()
        finally:
            await _close_connections(stale)

    async def release(self, conn: ManagedConnection) -> None:
        """Take a connection back; evict it instead if it is no longer healthy."""
        evicted: ManagedConnection | None = None

        async with self._condition:
            if self._in_use.pop(conn.id, None) is None:
                logger.warning(
                    "Released connection was not on loan from this pool",
                    host=self.host,
                    connection_id=conn.id,
                    stage="CP.4",
                )
                return

            if self._closed or not conn.is_reusable:
                evicted = conn
                self._destroyed += 1
                logger.info(
                    "Connection evicted on release",
                    host=self.host,
                    connection_id=conn.id,
                    health=conn.health.value,
                    consecutive_failures=conn.consecutive_failures,
                    stage="CP.4",
                )
            else:
                self._idle.append(conn)

            self._condition.notify()

        if evicted is not None:
            await evicted.aclose()

    async def cleanup(self) -> int:
        """
        Evict idle-too-long and unhealthy idle connections, then top the pool
        back up to ``min_connections_per_host`` when warming is enabled.

        Returns:
            Number of connections evicted
        """
        now = time.monotonic()
        evicted: list[ManagedConnection] = []

        async with self._condition:
            kept: deque[ManagedConnection] = deque()
            for conn in self._idle:
                if conn.is_idle(self.config.idle_timeout, now) or not conn.is_reusable:
                    evicted.append(conn)
                else:
                    kept.append(conn)
            self._idle = kept
            self._destroyed += len(evicted)

            if self.config.enable_connection_warming and not self._closed:
                while self.total_connections < self.config.min_connections_per_host:
                    self._idle.append(self._create_connection())
                self._condition.notify_all()

        await _close_connections(evicted)
        return len(evicted)

    async def warm_up(self, count: int) -> int:
        """Pre-create up to ``count`` idle connections. Returns how many were created."""
        created = 0
        async with self._condition:
            while created < count and self.total_connections < self.config.max_connections_per_host:
                self._idle.append(self._create_connection())
                created += 1
            self._condition.notify_all()
        return created

    async def aclose(self) -> None:
        """Close idle connections; loaned ones are closed when they come back."""
        async with self._condition:
            self._closed = True
            idle = list(self._idle)
            self._idle.clear()
            self._destroyed += len(idle)
            self._condition.notify_all()
        await _close_connections(idle)

    def get_stats(self) -> PoolStatistics:
        available = len(self._idle)
        in_use = len(self._in_use)
        total = available + in_use
        return PoolStatistics(
            host=self.host,
            available_connections=available,
            in_use_connections=in_use,
            total_connections_created=self._created,
            total_connections_destroyed=self._destroyed,
            total_requests_served=self._requests_served,
            peak_connections=self._peak,
            current_utilization=in_use / total if total else 0.0,
        )

    # ------------------------------------------------------------------------

    def _take_best_idle(self, stale: list[ManagedConnection]) -> ManagedConnection | None:
        best: ManagedConnection | None = None
        kept: deque[ManagedConnection] = deque()
        for conn in self._idle:
            if not conn.is_reusable:
                stale.append(conn)
                self._destroyed += 1
            elif best is None or conn.health_score > best.health_score:
                if best is not None:
                    kept.append(best)
                best = conn
            else:
                kept.append(conn)
        self._idle = kept
        return best

    def _create_connection(self) -> ManagedConnection:
        try:
            client = self._client_factory(self.host, self.config)
        except Exception as exc:
            logger.error(
                "Failed to construct connection",
                host=self.host,
                error=str(exc),
                error_type=type(exc).__name__,
                stage="CP.3",
            )
            raise TransportError.from_exception(
                exc,
                message=f"Failed to construct connection to {self.host}",
                operation="get_connection",
                host=self.host,
            ) from exc

        conn = ManagedConnection(client=client, host=self.host, max_failures=self.config.max_connection_failures)
        self._created += 1
        logger.debug("Connection created", host=self.host, connection_id=conn.id, stage="CP.3")
        return conn

    def _loan(self, conn: ManagedConnection) -> None:
        self._in_use[conn.id] = conn
        self._requests_served += 1
        self._peak = max(self._peak, len(self._in_use))

    def _raise_exhausted(self) -> None:
        logger.warning(
            "Connection pool exhausted",
            host=self.host,
            in_use=len(self._in_use),
            max_connections=self.config.max_connections_per_host,
            wait_timeout=self.config.connection_wait_timeout,
            stage="CP.2",
        )
        raise ConnectionPoolExhaustedError(
            f"No connection to {self.host} became available within "
            f"{self.config.connection_wait_timeout}s",
            details={
                "operation": "get_connection",
                "host": self.host,
                "in_use": len(self._in_use),
                "max_connections_per_host": self.config.max_connections_per_host,
            },
        )


async def _close_connections(connections: list[ManagedConnection]) -> None:
    for conn in connections:
        try:
            await conn.aclose()
        except Exception as exc:
            logger.warning(
                "Error closing connection",
                host=conn.host,
                connection_id=conn.id,
                error=str(exc),
                stage="CP.6",
            )


# ============================================================================
# Manager
# ============================================================================


class ConnectionManager:
    """
    Owns one ``HostConnectionPool`` per host plus the background cleanup task.

    STAGE-CP.0: Connection Manager Initialization

    Must be shut down with ``aclose()`` (or used as an async context manager)
    so that the cleanup task is cancelled and sockets are released.

    Usage:
        async with ConnectionManager(ConnectionConfig()) as manager:
            async with manager.connection("api.openai.com") as conn:
                response = await conn.client.get("https://api.openai.com/v1/models")
    """

    def __init__(
        self,
        config: ConnectionConfig | None = None,
        client_factory: ClientFactory | None = None,
    ):
        self.config = config or ConnectionConfig()
        self._client_factory = client_factory or default_client_factory
        self._pools: dict[str, HostConnectionPool] = {}
        self._cleanup_task: asyncio.Task | None = None
        self._closed = False

        logger.info(
            "Connection manager initialized",
            max_connections_per_host=self.config.max_connections_per_host,
            min_connections_per_host=self.config.min_connections_per_host,
            idle_timeout=self.config.idle_timeout,
            stage="CP.0",
        )

    async def __aenter__(self) -> "ConnectionManager":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def start(self) -> None:
        """Start the background cleanup loop (idempotent)."""
        if self._closed:
            raise ConnectionPoolError("Connection manager is closed", details={"operation": "start"})
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def get_connection(self, host: str) -> ManagedConnection:
        """
        Get a pooled, health-checked connection for ``host``.

        Raises:
            ConnectionPoolExhaustedError: Pool at capacity for the whole wait timeout
            TransportError: A new connection could not be constructed
        """
        if self._closed:
            raise ConnectionPoolError(
                "Connection manager is closed", details={"operation": "get_connection", "host": host}
            )
        conn = await self._get_pool(host).acquire()
        logger.debug("Connection acquired", host=host, connection_id=conn.id, stage="CP.2")
        return conn

    async def return_connection(self, conn: ManagedConnection) -> None:
        pool = self._pools.get(conn.host)
        if pool is None:
            await conn.aclose()
            return
        await pool.release(conn)

    @asynccontextmanager
    async def connection(self, host: str) -> AsyncIterator[ManagedConnection]:
        """Scoped acquisition: the connection is returned on every exit path."""
        conn = await self.get_connection(host)
        try:
            yield conn
        finally:
            await self.return_connection(conn)

    async def cleanup(self) -> int:
        """Run one maintenance pass over every pool. Returns connections evicted."""
        evicted = 0
        for pool in list(self._pools.values()):
            evicted += await pool.cleanup()
        if evicted:
            logger.info("Connection cleanup evicted connections", evicted=evicted, stage="CP.5")
        return evicted

    async def warm_up(self, host: str, count: int | None = None) -> int:
        count = self.config.min_connections_per_host if count is None else count
        created = await self._get_pool(host).warm_up(count)
        logger.info("Connections warmed up", host=host, created=created, stage="CP.3")
        return created

    def get_all_stats(self) -> list[PoolStatistics]:
        return [pool.get_stats() for pool in self._pools.values()]

    def get_efficiency_metrics(self) -> ConnectionEfficiencyMetrics:
        stats = self.get_all_stats()
        total_created = sum(s.total_connections_created for s in stats)
        total_served = sum(s.total_requests_served for s in stats)
        avg_utilization = (
            sum(s.current_utilization for s in stats) / len(stats) if stats else 0.0
        )
        reuse_ratio = total_served / total_created if total_created else 0.0

        return ConnectionEfficiencyMetrics(
            active_pools=len(stats),
            total_connections_created=total_created,
            total_requests_served=total_served,
            connection_reuse_ratio=reuse_ratio,
            average_pool_utilization=avg_utilization,
            efficiency_score=calculate_efficiency_score(reuse_ratio, avg_utilization),
        )

    async def aclose(self) -> None:
        """Cancel background maintenance and close every idle connection."""
        if self._closed:
            return
        self._closed = True

        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        for pool in self._pools.values():
            await pool.aclose()

        logger.info("Connection manager closed", pools=len(self._pools), stage="CP.6")

    # ------------------------------------------------------------------------

    def _get_pool(self, host: str) -> HostConnectionPool:
        pool = self._pools.get(host)
        if pool is None:
            pool = HostConnectionPool(host, self.config, self._client_factory)
            self._pools[host] = pool
            logger.info("Connection pool created", host=host, stage="CP.1")
        return pool

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.health_check_interval)
            try:
                await self.cleanup()
            except Exception as exc:
                # Keep maintaining the remaining pools on the next tick
                logger.error(
                    "Connection cleanup pass failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    stage="CP.5",
                )
