"""
Prometheus metrics for the HTTP API, marketplace sync and affiliate tracking.
"""

from .prometheus_metrics import (
    PrometheusMetrics,
    MetricsMiddleware,
    get_metrics,
    metrics_endpoint,
    normalize_endpoint,
)

__all__ = ["PrometheusMetrics", "MetricsMiddleware", "get_metrics", "metrics_endpoint", "normalize_endpoint"]
