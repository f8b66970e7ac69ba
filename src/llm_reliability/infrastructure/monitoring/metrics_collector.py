#!/usr/bin/env python3
"""
Metrics Collector with Prometheus Integration

This module aggregates request-path measurements into snapshots, analysis
reports and exports:
- Request latency samples (bounded, retention-pruned)
- Error counts by category with a per-minute rate and trend
- Snapshot assembly from pool, cache and circuit breaker statistics
- JSON export of snapshot history (orjson)
- Prometheus text exposition (prometheus-client)

Architectural Decision: prometheus-client for industry-standard metrics
- Histogram for latency, Counter for errors, updated on the hot path
- Snapshot-derived gauges exposed through a custom collector, so exporting
  never writes into the collector
- One CollectorRegistry per collector: several clients in one process never
  clash on metric names

Hot-path methods (``record_timing``, ``record_error``) never await and take no
lock; everything else is a derived, read-only view.

Author: System Architect
Date: 2025-12-10
"""

import asyncio
import time
from collections import Counter, deque
from collections.abc import Iterable, Iterator

import orjson
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client import Counter as PromCounter
from prometheus_client import Histogram
from prometheus_client.core import GaugeMetricFamily, Metric
from pydantic import BaseModel, ConfigDict, Field

from llm_reliability.core.config.constants import (
    DEFAULT_METRICS_COLLECTION_INTERVAL,
    DEFAULT_METRICS_MAX_ENTRIES,
    DEFAULT_METRICS_NAMESPACE,
    DEFAULT_METRICS_RETENTION_PERIOD,
    CircuitState,
)
from llm_reliability.core.config.settings import get_settings
from llm_reliability.core.logging.logger import get_logger
from llm_reliability.core.resilience.circuit_breaker import CircuitBreakerStats
from llm_reliability.core.resilience.connection_manager import (
    ConnectionEfficiencyMetrics,
    PoolStatistics,
)
from llm_reliability.infrastructure.cache.response_cache import CacheStatistics
from llm_reliability.infrastructure.monitoring.models import (
    ErrorMetrics,
    ErrorTrend,
    MetricsAnalysisReport,
    MetricsSnapshot,
    TimingMetrics,
)

logger = get_logger(__name__)

_CIRCUIT_STATE_VALUES = {
    CircuitState.CLOSED: 0.0,
    CircuitState.HALF_OPEN: 1.0,
    CircuitState.OPEN: 2.0,
}

_CIRCUIT_HEALTH = {
    CircuitState.CLOSED: 1.0,
    CircuitState.HALF_OPEN: 0.5,
    CircuitState.OPEN: 0.0,
}


class MetricsConfig(BaseModel):
    """What to collect and how long to keep it."""

    collect_connection_metrics: bool = True
    collect_cache_metrics: bool = True
    collect_circuit_breaker_metrics: bool = True
    collect_timing_metrics: bool = True
    collect_error_metrics: bool = True
    max_entries: int = Field(default=DEFAULT_METRICS_MAX_ENTRIES, gt=0)
    collection_interval: float = Field(default=DEFAULT_METRICS_COLLECTION_INTERVAL, gt=0)
    retention_period: float = Field(default=DEFAULT_METRICS_RETENTION_PERIOD, gt=0)
    namespace: str = DEFAULT_METRICS_NAMESPACE

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_settings(cls) -> "MetricsConfig":
        metrics = get_settings().metrics
        return cls(
            max_entries=metrics.METRICS_MAX_ENTRIES,
            collection_interval=metrics.METRICS_COLLECTION_INTERVAL,
            retention_period=metrics.METRICS_RETENTION_PERIOD,
            namespace=metrics.METRICS_NAMESPACE,
        )


class _SnapshotCollector:
    """Serves gauges computed from the latest stored snapshot at scrape time."""

    def __init__(self, owner: "MetricsCollector"):
        self._owner = owner

    def collect(self) -> Iterable[Metric]:
        snapshot = self._owner.latest_snapshot()
        if snapshot is None:
            return []
        ns = self._owner.config.namespace
        families: list[Metric] = []

        conn = snapshot.connection_metrics
        if conn is not None:
            families.append(GaugeMetricFamily(
                f"{ns}_connection_efficiency_score", "Connection pool efficiency score (0-1)",
                value=conn.efficiency_score,
            ))
            families.append(GaugeMetricFamily(
                f"{ns}_connection_reuse_ratio", "Requests served per connection created",
                value=conn.connection_reuse_ratio,
            ))
            families.append(GaugeMetricFamily(
                f"{ns}_connection_pool_utilization", "Average in-use fraction across host pools",
                value=conn.average_pool_utilization,
            ))

        cache = snapshot.cache_metrics
        if cache is not None:
            families.append(GaugeMetricFamily(
                f"{ns}_cache_hit_ratio", "Response cache hit ratio", value=cache.hit_ratio,
            ))
            families.append(GaugeMetricFamily(
                f"{ns}_cache_entries", "Responses currently cached", value=cache.current_entries,
            ))

        breaker = snapshot.circuit_breaker_metrics
        if breaker is not None:
            state = GaugeMetricFamily(
                f"{ns}_circuit_breaker_state",
                "Circuit breaker state (0=closed, 1=half_open, 2=open)",
                labels=["circuit"],
            )
            state.add_metric([breaker.name], _CIRCUIT_STATE_VALUES[breaker.state])
            families.append(state)
            families.append(GaugeMetricFamily(
                f"{ns}_circuit_breaker_trips", "Times the circuit has opened", value=breaker.trip_count,
            ))

        return families


class MetricsCollector:
    """
    Per-client metrics aggregation.

    STAGE-MC: Metrics collection

    Usage:
        collector = MetricsCollector(MetricsConfig())
        collector.record_timing(0.182)
        collector.record_error("transport")
        snapshot = collector.collect_snapshot(cache_stats=cache.get_statistics())
        collector.store_snapshot(snapshot)
        print(collector.export_prometheus())
    """

    def __init__(self, config: MetricsConfig | None = None):
        self.config = config or MetricsConfig()

        # (wall-clock timestamp, duration in ms)
        self._timings: deque[tuple[float, float]] = deque(maxlen=self.config.max_entries)
        # (wall-clock timestamp, category)
        self._errors: deque[tuple[float, str]] = deque(maxlen=self.config.max_entries)
        self._error_counts: Counter[str] = Counter()
        self._history: deque[MetricsSnapshot] = deque(maxlen=self.config.max_entries)
        self._retention_task: asyncio.Task | None = None

        self.registry = CollectorRegistry()
        ns = self.config.namespace
        self._request_duration = Histogram(
            f"{ns}_request_duration_seconds",
            "Managed request duration in seconds",
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self.registry,
        )
        self._errors_total = PromCounter(
            f"{ns}_errors_total",
            "Errors by category",
            ["category"],
            registry=self.registry,
        )
        self.registry.register(_SnapshotCollector(self))

        logger.info("Metrics collector initialized", namespace=ns, stage="MC.0")

    # ========================================================================
    # Hot path
    # ========================================================================

    def record_timing(self, duration_seconds: float) -> None:
        """Record one request latency."""
        if not self.config.collect_timing_metrics:
            return
        self._timings.append((time.time(), duration_seconds * 1000.0))
        self._request_duration.observe(duration_seconds)

    def record_error(self, category: str) -> None:
        """Count one error under ``category`` (e.g. "transport", "timeout")."""
        if not self.config.collect_error_metrics:
            return
        self._errors.append((time.time(), category))
        self._error_counts[category] += 1
        self._errors_total.labels(category=category).inc()

    # ========================================================================
    # Snapshots
    # ========================================================================

    def collect_snapshot(
        self,
        connection_metrics: ConnectionEfficiencyMetrics | None = None,
        pool_stats: list[PoolStatistics] | None = None,
        cache_stats: CacheStatistics | None = None,
        breaker_stats: CircuitBreakerStats | None = None,
    ) -> MetricsSnapshot:
        """
        Assemble a point-in-time view from whatever was supplied.

        Missing inputs stay None in the snapshot. Does not store the snapshot;
        see ``store_snapshot``.
        """
        cfg = self.config
        return MetricsSnapshot(
            timestamp=time.time(),
            connection_metrics=connection_metrics if cfg.collect_connection_metrics else None,
            pool_statistics=(
                tuple(pool_stats) if pool_stats is not None and cfg.collect_connection_metrics else None
            ),
            cache_metrics=cache_stats if cfg.collect_cache_metrics else None,
            circuit_breaker_metrics=breaker_stats if cfg.collect_circuit_breaker_metrics else None,
            timing_metrics=self._timing_metrics() if cfg.collect_timing_metrics else None,
            error_metrics=self._error_metrics() if cfg.collect_error_metrics else None,
        )

    def store_snapshot(self, snapshot: MetricsSnapshot) -> None:
        self._history.append(snapshot)

    def get_history(self, limit: int | None = None) -> list[MetricsSnapshot]:
        history = list(self._history)
        return history[-limit:] if limit else history

    def latest_snapshot(self) -> MetricsSnapshot | None:
        return self._history[-1] if self._history else None

    def reset(self) -> None:
        """Drop all samples and history. Prometheus counters keep their totals."""
        self._timings.clear()
        self._errors.clear()
        self._error_counts.clear()
        self._history.clear()

    # ========================================================================
    # Derived views
    # ========================================================================

    def generate_analysis_report(self) -> MetricsAnalysisReport:
        """
        Grade overall health from the most recent stored snapshot.

        Health score is the mean of the available component scores
        (connection efficiency, cache hit ratio, circuit state). Grades:
        A >= 0.9, B >= 0.8, C >= 0.7, D >= 0.6, otherwise F.
        """
        now = time.time()
        if not self._history:
            return MetricsAnalysisReport(
                timestamp=now,
                health_score=0.0,
                performance_grade="N/A",
                risk_level="Unknown",
                kpis=["No metrics data available"],
                issues=["Insufficient metrics data for analysis"],
                recommendations=["Enable metrics collection and allow time for data accumulation"],
            )

        latest = self._history[-1]
        previous = self._history[-2] if len(self._history) > 1 else None
        scores: list[float] = []
        kpis: list[str] = []
        trends: list[str] = []
        issues: list[str] = []
        recommendations: list[str] = []

        conn = latest.connection_metrics
        if conn is not None:
            scores.append(conn.efficiency_score)
            kpis.append(f"Connection Efficiency: {conn.efficiency_score * 100:.1f}%")
            if conn.efficiency_score < 0.7:
                issues.append("Low connection efficiency detected")
                recommendations.append("Review connection pool configuration")
            if previous is not None and previous.connection_metrics is not None:
                trends.append(_trend("Connection efficiency", previous.connection_metrics.efficiency_score,
                                     conn.efficiency_score))

        cache = latest.cache_metrics
        if cache is not None:
            scores.append(cache.hit_ratio)
            kpis.append(f"Cache Hit Ratio: {cache.hit_ratio * 100:.1f}%")
            if cache.hit_ratio < 0.5:
                issues.append("Low cache hit ratio")
                recommendations.append("Review cache TTL settings and request patterns")
            if previous is not None and previous.cache_metrics is not None:
                trends.append(_trend("Cache hit ratio", previous.cache_metrics.hit_ratio, cache.hit_ratio))

        breaker = latest.circuit_breaker_metrics
        if breaker is not None:
            scores.append(_CIRCUIT_HEALTH[breaker.state])
            kpis.append(f"Circuit State: {breaker.state.value} (trips: {breaker.trip_count})")
            if breaker.state != CircuitState.CLOSED:
                issues.append(f"Circuit breaker is {breaker.state.value}")
                recommendations.append("Check upstream availability before raising thresholds")

        timing = latest.timing_metrics
        if timing is not None and timing.sample_count:
            kpis.append(f"Latency p95: {timing.p95_ms:.1f}ms")

        errors = latest.error_metrics
        if errors is not None:
            kpis.append(f"Error Rate: {errors.error_rate_per_minute:.1f}/min")
            trends.append(f"Error trend: {errors.error_trend.value}")
            if errors.error_rate_per_minute > 5.0:
                issues.append("High error rate detected")
                recommendations.append("Investigate root cause of errors")

        health_score = sum(scores) / len(scores) if scores else 0.5

        return MetricsAnalysisReport(
            timestamp=now,
            health_score=health_score,
            performance_grade=_grade(health_score),
            risk_level=_risk_level(health_score),
            kpis=kpis,
            trends=trends,
            issues=issues,
            recommendations=recommendations,
        )

    def export_json(self) -> str:
        """Pretty-printed JSON array of stored snapshots."""
        payload = [snapshot.model_dump(mode="json") for snapshot in self._history]
        return orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode()

    def export_prometheus(self) -> str:
        """Prometheus text exposition of this collector's registry."""
        return generate_latest(self.registry).decode()

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    # ========================================================================
    # Background retention
    # ========================================================================

    def start(self) -> None:
        """Start the periodic retention sweep (idempotent)."""
        if self._retention_task is None or self._retention_task.done():
            self._retention_task = asyncio.create_task(self._retention_loop())

    async def aclose(self) -> None:
        if self._retention_task is None:
            return
        self._retention_task.cancel()
        try:
            await self._retention_task
        except asyncio.CancelledError:
            pass
        self._retention_task = None

    def prune(self, now: float | None = None) -> int:
        """Drop samples and snapshots older than ``retention_period``."""
        cutoff = (time.time() if now is None else now) - self.config.retention_period
        removed = 0
        for samples in (self._timings, self._errors):
            while samples and samples[0][0] < cutoff:
                samples.popleft()
                removed += 1
        while self._history and self._history[0].timestamp < cutoff:
            self._history.popleft()
            removed += 1
        return removed

    async def _retention_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.collection_interval)
            removed = self.prune()
            if removed:
                logger.debug("Expired metrics pruned", removed=removed, stage="MC.3")

    # ------------------------------------------------------------------------

    def _timing_metrics(self) -> TimingMetrics:
        durations = sorted(ms for _, ms in self._timings)
        if not durations:
            return TimingMetrics(
                sample_count=0, average_ms=0.0, min_ms=0.0, max_ms=0.0, p95_ms=0.0, p99_ms=0.0, total_ms=0.0
            )
        n = len(durations)
        total = sum(durations)
        return TimingMetrics(
            sample_count=n,
            average_ms=total / n,
            min_ms=durations[0],
            max_ms=durations[-1],
            p95_ms=durations[min(n * 95 // 100, n - 1)],
            p99_ms=durations[min(n * 99 // 100, n - 1)],
            total_ms=total,
        )

    def _error_metrics(self) -> ErrorMetrics:
        one_minute_ago = time.time() - 60.0
        rate = float(sum(1 for ts, _ in self._errors if ts >= one_minute_ago))
        most_common = self._error_counts.most_common(1)
        if rate < 1.0:
            trend = ErrorTrend.STABLE
        elif rate < 5.0:
            trend = ErrorTrend.INCREASING
        else:
            trend = ErrorTrend.CRITICAL
        return ErrorMetrics(
            total_errors=sum(self._error_counts.values()),
            errors_by_category=dict(self._error_counts),
            error_rate_per_minute=rate,
            most_common_error=most_common[0][0] if most_common else None,
            error_trend=trend,
        )


def _grade(score: float) -> str:
    if score >= 0.9:
        return "A"
    if score >= 0.8:
        return "B"
    if score >= 0.7:
        return "C"
    if score >= 0.6:
        return "D"
    return "F"


def _risk_level(score: float) -> str:
    if score >= 0.8:
        return "Low"
    if score >= 0.6:
        return "Medium"
    return "High"


def _trend(label: str, before: float, after: float) -> str:
    if after > before:
        return f"{label} improving"
    if after < before:
        return f"{label} declining"
    return f"{label} stable"


def iter_snapshot_sections(snapshot: MetricsSnapshot) -> Iterator[str]:
    """Names of the sections present in ``snapshot`` (for logging/debugging)."""
    for name in MetricsSnapshot.model_fields:
        if name != "timestamp" and getattr(snapshot, name) is not None:
            yield name
