"""
Monitoring Module

Metrics collection, analysis and export (JSON and Prometheus text format).
"""

from llm_reliability.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    MetricsConfig,
)
from llm_reliability.infrastructure.monitoring.models import (
    ErrorMetrics,
    ErrorTrend,
    MetricsAnalysisReport,
    MetricsSnapshot,
    TimingMetrics,
)

__all__ = [
    "MetricsCollector",
    "MetricsConfig",
    "ErrorMetrics",
    "ErrorTrend",
    "MetricsAnalysisReport",
    "MetricsSnapshot",
    "TimingMetrics",
]
