"""
Enhanced HTTP Client

Request-executing facade that composes the reliability building blocks:

    ConnectionManager   (always)   per-host pooled connections
    ResponseCache       (optional) GET and opt-in POST response caching
    CircuitBreaker      (optional) fail-fast gate around the network call
    MetricsCollector    (optional) timings, error categories, snapshots

STAGE-EC: Managed request flow
-------------------------------
EC.1: Resolve target host from base URL + path
EC.2: Acquire connection (scoped; always returned, cancellation included)
EC.3: Circuit breaker guard (if configured)
EC.4: Send request on the acquired connection
EC.5: Record outcome on the connection AND the metrics collector
EC.6: Decode response body
EC.7: Cache lookup / store (cached variants only)

Nothing here retries. Transport, timeout, serialization, circuit-open and
pool-exhaustion errors each surface as their own exception type, and the
caller owns the retry policy.

Author: System Architect
Date: 2025-12-10
"""

import asyncio
import time
from collections.abc import Mapping
from typing import Any, TypeVar

import httpx
import orjson
import pydantic
from pydantic import BaseModel

from llm_reliability.core.config.settings import get_settings
from llm_reliability.core.exceptions import (
    CacheEntryTooLargeError,
    CircuitBreakerOpenError,
    ConnectionPoolExhaustedError,
    OperationTimeoutError,
    ResponseStatusError,
    SerializationError,
    TransportError,
)
from llm_reliability.core.logging.logger import get_logger
from llm_reliability.core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerStats,
)
from llm_reliability.core.resilience.connection_manager import (
    ClientFactory,
    ConnectionConfig,
    ConnectionEfficiencyMetrics,
    ConnectionManager,
    ManagedConnection,
    PoolStatistics,
)
from llm_reliability.infrastructure.cache.response_cache import (
    CacheConfig,
    CacheKey,
    CacheStatistics,
    ResponseCache,
)
from llm_reliability.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    MetricsConfig,
    iter_snapshot_sections,
)
from llm_reliability.infrastructure.monitoring.models import (
    MetricsAnalysisReport,
    MetricsSnapshot,
)

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class PerformanceDashboard(BaseModel):
    """Unified view over every enabled capability of one client."""

    timestamp: float
    base_url: str
    caching_enabled: bool
    circuit_breaker_enabled: bool
    metrics_enabled: bool
    connection_metrics: ConnectionEfficiencyMetrics
    pool_statistics: list[PoolStatistics]
    cache_statistics: CacheStatistics | None = None
    circuit_breaker_statistics: CircuitBreakerStats | None = None
    analysis: MetricsAnalysisReport | None = None
    recommendations: list[str]


class EnhancedClient:
    """
    Pooled, optionally cached and circuit-broken HTTP client for JSON APIs.

    Capabilities are enabled by passing their config; ``None`` leaves them off.
    Must be closed with ``aclose()`` or used as an async context manager.

    Usage:
        async with EnhancedClient(
            "https://api.openai.com/v1",
            cache_config=CacheConfig(),
            circuit_breaker_config=CircuitBreakerConfig(failure_threshold=3),
            metrics_config=MetricsConfig(),
            default_headers={"Authorization": f"Bearer {api_key}"},
        ) as client:
            models = await client.get_cached("/models", ttl=600)
    """

    def __init__(
        self,
        base_url: str,
        connection_config: ConnectionConfig | None = None,
        cache_config: CacheConfig | None = None,
        circuit_breaker_config: CircuitBreakerConfig | None = None,
        metrics_config: MetricsConfig | None = None,
        *,
        default_headers: Mapping[str, str] | None = None,
        client_factory: ClientFactory | None = None,
    ):
        self.base_url = httpx.URL(base_url)
        self._default_headers = dict(default_headers or {})
        self._client_factory = client_factory
        self._connection_manager = ConnectionManager(connection_config, client_factory)
        self._cache = ResponseCache(cache_config) if cache_config is not None else None
        self._circuit_breaker = (
            CircuitBreaker(self.host, circuit_breaker_config) if circuit_breaker_config is not None else None
        )
        self._metrics = MetricsCollector(metrics_config) if metrics_config is not None else None
        self._started = False

        logger.info(
            "Enhanced client initialized",
            base_url=str(self.base_url),
            caching=self._cache is not None,
            circuit_breaker=self._circuit_breaker is not None,
            metrics=self._metrics is not None,
            stage="EC.0",
        )

    @classmethod
    def from_settings(cls, base_url: str, **kwargs: Any) -> "EnhancedClient":
        """Build a client whose capabilities and limits come from environment settings."""
        settings = get_settings()
        return cls(
            base_url,
            connection_config=ConnectionConfig.from_settings(),
            cache_config=CacheConfig.from_settings() if settings.ENABLE_CACHING else None,
            circuit_breaker_config=(
                CircuitBreakerConfig.from_settings() if settings.ENABLE_CIRCUIT_BREAKER else None
            ),
            metrics_config=MetricsConfig.from_settings() if settings.ENABLE_METRICS else None,
            **kwargs,
        )

    @property
    def host(self) -> str:
        return self.base_url.netloc.decode("ascii")

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def __aenter__(self) -> "EnhancedClient":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def start(self) -> None:
        """Start background maintenance for the manager, cache and metrics."""
        self._connection_manager.start()
        if self._cache is not None:
            self._cache.start()
        if self._metrics is not None:
            self._metrics.start()
        self._started = True

    async def aclose(self) -> None:
        if self._cache is not None:
            await self._cache.aclose()
        if self._metrics is not None:
            await self._metrics.aclose()
        await self._connection_manager.aclose()
        self._started = False
        logger.info("Enhanced client closed", base_url=str(self.base_url), stage="EC.9")

    # ========================================================================
    # Requests
    # ========================================================================

    async def execute_managed_request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        headers: Mapping[str, str] | None = None,
        response_model: type[ModelT] | None = None,
    ) -> Any:
        """
        Execute one request through the managed pipeline.

        Args:
            method: HTTP method
            path: Path relative to ``base_url`` (or an absolute URL)
            body: JSON-serializable request body
            headers: Extra headers merged over the default headers
            response_model: Pydantic model to validate the JSON response into

        Returns:
            Decoded JSON (or a ``response_model`` instance)

        Raises:
            ConnectionPoolExhaustedError: No connection available within the wait timeout
            CircuitBreakerOpenError: Circuit open; nothing was sent
            TransportError: Connection failed or dropped
            OperationTimeoutError: Request exceeded ``request_timeout``
            ResponseStatusError: Upstream answered with status >= 400
            SerializationError: Body could not be encoded or response decoded
        """
        raw = await self._request_bytes(method, path, body, headers)
        return self._decode(raw, response_model, path)

    async def get_cached(
        self,
        path: str,
        ttl: float | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        response_model: type[ModelT] | None = None,
    ) -> Any:
        """GET through the cache when caching is enabled (``ttl`` None = default TTL)."""
        if self._cache is None:
            return await self.execute_managed_request("GET", path, headers=headers, response_model=response_model)

        key = CacheKey.build("GET", path, headers=headers)
        return await self._cached_request(key, "GET", path, None, headers, ttl, response_model)

    async def post_cached(
        self,
        path: str,
        body: Any,
        ttl: float | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        response_model: type[ModelT] | None = None,
    ) -> Any:
        """
        POST, caching the response only when caching is enabled AND ``ttl`` is given.

        A POST without an explicit TTL always goes to the network and is never stored.
        """
        if self._cache is None or ttl is None:
            return await self.execute_managed_request(
                "POST", path, body, headers=headers, response_model=response_model
            )

        key = CacheKey.build("POST", path, body=body, headers=headers)
        return await self._cached_request(key, "POST", path, body, headers, ttl, response_model)

    # ========================================================================
    # Capability toggles
    # ========================================================================

    def enable_caching(self, config: CacheConfig | None = None) -> None:
        if self._cache is None:
            self._cache = ResponseCache(config or CacheConfig())
            if self._started:
                self._cache.start()

    async def disable_caching(self) -> None:
        cache, self._cache = self._cache, None
        if cache is not None:
            await cache.aclose()

    def enable_circuit_breaker(self, config: CircuitBreakerConfig | None = None) -> None:
        if self._circuit_breaker is None:
            self._circuit_breaker = CircuitBreaker(self.host, config or CircuitBreakerConfig())

    def disable_circuit_breaker(self) -> None:
        self._circuit_breaker = None

    def enable_metrics(self, config: MetricsConfig | None = None) -> None:
        if self._metrics is None:
            self._metrics = MetricsCollector(config or MetricsConfig())
            if self._started:
                self._metrics.start()

    async def disable_metrics(self) -> None:
        metrics, self._metrics = self._metrics, None
        if metrics is not None:
            await metrics.aclose()

    @property
    def caching_enabled(self) -> bool:
        return self._cache is not None

    @property
    def circuit_breaker_enabled(self) -> bool:
        return self._circuit_breaker is not None

    @property
    def metrics_enabled(self) -> bool:
        return self._metrics is not None

    # ========================================================================
    # Views
    # ========================================================================

    def get_cache_statistics(self) -> CacheStatistics | None:
        return self._cache.get_statistics() if self._cache is not None else None

    async def clear_cache(self) -> None:
        if self._cache is not None:
            await self._cache.clear()

    def get_connection_stats(self) -> ConnectionEfficiencyMetrics:
        return self._connection_manager.get_efficiency_metrics()

    def get_pool_stats(self) -> list[PoolStatistics]:
        return self._connection_manager.get_all_stats()

    def get_circuit_breaker_stats(self) -> CircuitBreakerStats | None:
        return self._circuit_breaker.get_stats() if self._circuit_breaker is not None else None

    def get_metrics_snapshot(self) -> MetricsSnapshot | None:
        """Collect a snapshot from every enabled capability and keep it in history."""
        if self._metrics is None:
            return None
        snapshot = self._metrics.collect_snapshot(
            connection_metrics=self.get_connection_stats(),
            pool_stats=self.get_pool_stats(),
            cache_stats=self.get_cache_statistics(),
            breaker_stats=self.get_circuit_breaker_stats(),
        )
        self._metrics.store_snapshot(snapshot)
        logger.debug("Metrics snapshot stored", sections=list(iter_snapshot_sections(snapshot)), stage="MC.1")
        return snapshot

    def get_metrics_analysis(self) -> MetricsAnalysisReport | None:
        return self._metrics.generate_analysis_report() if self._metrics is not None else None

    def export_metrics_json(self) -> str:
        return self._metrics.export_json() if self._metrics is not None else "[]"

    def export_metrics_prometheus(self) -> str:
        return self._metrics.export_prometheus() if self._metrics is not None else ""

    def get_performance_dashboard(self) -> PerformanceDashboard:
        connection = self.get_connection_stats()
        cache_stats = self.get_cache_statistics()
        breaker_stats = self.get_circuit_breaker_stats()
        analysis = None
        if self._metrics is not None:
            self.get_metrics_snapshot()
            analysis = self._metrics.generate_analysis_report()

        recommendations: list[str] = []
        if connection.total_connections_created and connection.efficiency_score < 0.7:
            recommendations.append("Connection efficiency is low; tune pool size and idle timeout")
        if cache_stats is None:
            recommendations.append("Enable response caching for repeated GET requests")
        elif cache_stats.total_requests and cache_stats.hit_ratio < 0.5:
            recommendations.append("Cache hit ratio is below 50%; consider longer TTLs")
        if breaker_stats is None:
            recommendations.append("Enable the circuit breaker to fail fast during upstream outages")
        elif breaker_stats.trip_count:
            recommendations.append(f"Circuit breaker tripped {breaker_stats.trip_count} time(s); check upstream health")
        if analysis is not None:
            recommendations.extend(r for r in analysis.recommendations if r not in recommendations)

        return PerformanceDashboard(
            timestamp=time.time(),
            base_url=str(self.base_url),
            caching_enabled=self._cache is not None,
            circuit_breaker_enabled=self._circuit_breaker is not None,
            metrics_enabled=self._metrics is not None,
            connection_metrics=connection,
            pool_statistics=self.get_pool_stats(),
            cache_statistics=cache_stats,
            circuit_breaker_statistics=breaker_stats,
            analysis=analysis,
            recommendations=recommendations,
        )

    # ========================================================================
    # Connection management
    # ========================================================================

    async def warm_up_connections(self, count: int | None = None) -> int:
        """Pre-create idle connections to the base URL host."""
        return await self._connection_manager.warm_up(self.host, count)

    async def update_connection_config(self, config: ConnectionConfig) -> None:
        """Swap in a new connection manager; the old one and its cleanup task are closed."""
        old = self._connection_manager
        self._connection_manager = ConnectionManager(config, self._client_factory)
        if self._started:
            self._connection_manager.start()
        await old.aclose()
        logger.info(
            "Connection configuration updated",
            max_connections_per_host=config.max_connections_per_host,
            stage="EC.0",
        )

    # ========================================================================
    # Internals
    # ========================================================================

    async def _cached_request(
        self,
        key: CacheKey,
        method: str,
        path: str,
        body: Any,
        headers: Mapping[str, str] | None,
        ttl: float | None,
        response_model: type[ModelT] | None,
    ) -> Any:
        cached = await self._cache.get(key)
        if cached is not None:
            logger.debug("Cache hit", method=method, path=path, stage="EC.7")
            return self._decode(cached, response_model, path)

        raw = await self._request_bytes(method, path, body, headers)
        result = self._decode(raw, response_model, path)

        # The cache may have been disabled while the request was in flight
        if self._cache is not None:
            try:
                await self._cache.put(key, raw, ttl)
            except CacheEntryTooLargeError as exc:
                logger.warning("Response not cached", path=path, reason=exc.message, stage="EC.7")
        return result

    async def _request_bytes(
        self,
        method: str,
        path: str,
        body: Any,
        headers: Mapping[str, str] | None,
    ) -> bytes:
        url = self._resolve_url(path)
        host = url.netloc.decode("ascii")
        content = self._encode(body, path) if body is not None else None

        request_headers = {**self._default_headers, **(headers or {})}
        if content is not None:
            request_headers.setdefault("Content-Type", "application/json")

        try:
            async with self._connection_manager.connection(host) as conn:
                if self._circuit_breaker is not None:
                    response = await self._circuit_breaker.execute(
                        lambda: self._send(conn, method, url, content, request_headers)
                    )
                else:
                    response = await self._send(conn, method, url, content, request_headers)
        except CircuitBreakerOpenError:
            self._record_error("circuit_open")
            raise
        except ConnectionPoolExhaustedError:
            self._record_error("pool_exhausted")
            raise

        return response.content

    async def _send(
        self,
        conn: ManagedConnection,
        method: str,
        url: httpx.URL,
        content: bytes | None,
        headers: dict[str, str],
    ) -> httpx.Response:
        timeout = self._connection_manager.config.request_timeout
        started = time.perf_counter()

        try:
            response = await asyncio.wait_for(
                conn.client.request(method, url, content=content, headers=headers),
                timeout=timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            self._record_failure(conn, started, "timeout")
            logger.warning("Request timed out", method=method, url=str(url), timeout=timeout, stage="EC.5")
            raise OperationTimeoutError.from_exception(
                exc,
                message=f"{method} {url} timed out after {timeout}s",
                operation="execute_managed_request",
                method=method,
                url=str(url),
                timeout=timeout,
            ) from exc
        except httpx.RequestError as exc:
            self._record_failure(conn, started, "transport")
            logger.warning(
                "Request failed",
                method=method,
                url=str(url),
                error=str(exc),
                error_type=type(exc).__name__,
                stage="EC.5",
            )
            raise TransportError.from_exception(
                exc,
                message=f"{method} {url} failed: {exc.__class__.__name__}",
                operation="execute_managed_request",
                method=method,
                url=str(url),
            ) from exc

        elapsed = time.perf_counter() - started
        conn.record_success(elapsed)
        if self._metrics is not None:
            self._metrics.record_timing(elapsed)

        if response.status_code >= 400:
            self._record_error("http_status")
            logger.warning(
                "Upstream returned error status",
                method=method,
                url=str(url),
                status_code=response.status_code,
                stage="EC.5",
            )
            raise ResponseStatusError(
                f"{method} {url} returned HTTP {response.status_code}",
                status_code=response.status_code,
                details={
                    "operation": "execute_managed_request",
                    "method": method,
                    "url": str(url),
                    "body": response.text[:500],
                },
            )

        logger.debug(
            "Request completed",
            method=method,
            url=str(url),
            status_code=response.status_code,
            duration_ms=round(elapsed * 1000, 2),
            connection_id=conn.id,
            stage="EC.5",
        )
        return response

    def _record_failure(self, conn: ManagedConnection, started: float, category: str) -> None:
        conn.record_failure()
        if self._metrics is not None:
            self._metrics.record_timing(time.perf_counter() - started)
            self._metrics.record_error(category)

    def _record_error(self, category: str) -> None:
        if self._metrics is not None:
            self._metrics.record_error(category)

    def _resolve_url(self, path: str) -> httpx.URL:
        if path.startswith(("http://", "https://")):
            return httpx.URL(path)
        base = str(self.base_url).rstrip("/")
        return httpx.URL(f"{base}/{path.lstrip('/')}")

    def _encode(self, body: Any, path: str) -> bytes:
        try:
            return orjson.dumps(body)
        except TypeError as exc:
            self._record_error("serialization")
            raise SerializationError.from_exception(
                exc, message="Request body is not JSON-serializable", operation="encode_request", path=path
            ) from exc

    def _decode(self, raw: bytes, response_model: type[ModelT] | None, path: str) -> Any:
        try:
            data = orjson.loads(raw) if raw else None
        except orjson.JSONDecodeError as exc:
            self._record_error("serialization")
            raise SerializationError.from_exception(
                exc, message="Response body is not valid JSON", operation="decode_response", path=path
            ) from exc

        if response_model is None:
            return data
        try:
            return response_model.model_validate(data)
        except pydantic.ValidationError as exc:
            self._record_error("serialization")
            raise SerializationError.from_exception(
                exc,
                message=f"Response does not match {response_model.__name__}",
                operation="decode_response",
                path=path,
            ) from exc
