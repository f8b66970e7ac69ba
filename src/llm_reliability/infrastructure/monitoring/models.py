"""
Metrics Data Models

Immutable snapshot and report types produced by the MetricsCollector.
Snapshots embed the read-only statistics models of the connection manager,
response cache and circuit breaker as-is, so a snapshot is exactly what those
components reported at collection time.

Author: System Architect
Date: 2025-12-10
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from llm_reliability.core.resilience.circuit_breaker import CircuitBreakerStats
from llm_reliability.core.resilience.connection_manager import (
    ConnectionEfficiencyMetrics,
    PoolStatistics,
)
from llm_reliability.infrastructure.cache.response_cache import CacheStatistics


class ErrorTrend(str, Enum):
    """Direction of the recent error rate."""

    STABLE = "stable"
    INCREASING = "increasing"
    CRITICAL = "critical"


class TimingMetrics(BaseModel):
    """Latency distribution of recorded requests, in milliseconds."""

    model_config = ConfigDict(frozen=True)

    sample_count: int
    average_ms: float
    min_ms: float
    max_ms: float
    p95_ms: float
    p99_ms: float
    total_ms: float


class ErrorMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_errors: int
    errors_by_category: dict[str, int]
    error_rate_per_minute: float
    most_common_error: str | None
    error_trend: ErrorTrend


class MetricsSnapshot(BaseModel):
    """
    Point-in-time aggregate view.

    Sections that were not supplied (or whose collection is disabled) are
    None, never zero-filled.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: float
    connection_metrics: ConnectionEfficiencyMetrics | None = None
    pool_statistics: tuple[PoolStatistics, ...] | None = None
    cache_metrics: CacheStatistics | None = None
    circuit_breaker_metrics: CircuitBreakerStats | None = None
    timing_metrics: TimingMetrics | None = None
    error_metrics: ErrorMetrics | None = None


class MetricsAnalysisReport(BaseModel):
    """Health grading and recommendations derived from stored snapshots."""

    model_config = ConfigDict(frozen=True)

    timestamp: float
    health_score: float
    performance_grade: str
    risk_level: str
    kpis: list[str] = Field(default_factory=list)
    trends: list[str] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
