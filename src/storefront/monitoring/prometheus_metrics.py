"""
Prometheus metrics for monitoring application behaviour.

Metrics exported:
- storefront_requests_total: Total HTTP requests
- storefront_request_duration_seconds: Request duration histogram
- storefront_errors_total: Unhandled errors by type
- storefront_marketplace_sync_runs_total: Sync runs by platform and status
- storefront_marketplace_sync_duration_seconds: Sync run duration histogram
- storefront_marketplace_orders_total: Synced orders by outcome
- storefront_affiliate_clicks_total: Tracked referral clicks
- storefront_affiliate_conversions_total: Recorded conversions
- storefront_affiliate_commission_total: Commission amount recorded
"""

import re
import time
from typing import Optional

from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
)
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.utils.logger import get_logger

logger = get_logger(__name__)


_PREFIXED_ID_RE = re.compile(r"/[a-z]+_[0-9a-f]{32}")
_ORDER_ID_RE = re.compile(r"/mp_[^/]+")
_NUMERIC_ID_RE = re.compile(r"/\d+")


class PrometheusMetrics:
    """
    Prometheus metrics collector for the Storefront backend.

    Tracks:
    - HTTP request metrics (rate, duration, status codes)
    - Marketplace sync runs and order outcomes
    - Affiliate clicks, conversions and commission
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize Prometheus metrics.

        Args:
            registry: Prometheus registry; a private one is created when omitted
        """
        self.registry = registry or CollectorRegistry()

        # HTTP request metrics
        self.requests_total = Counter(
            "storefront_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry,
        )

        self.request_duration = Histogram(
            "storefront_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry,
        )

        self.errors_total = Counter(
            "storefront_errors_total",
            "Total errors",
            ["error_type", "endpoint"],
            registry=self.registry,
        )

        # Marketplace sync metrics
        self.sync_runs_total = Counter(
            "storefront_marketplace_sync_runs_total",
            "Marketplace sync runs",
            ["platform", "status"],
            registry=self.registry,
        )

        self.sync_duration = Histogram(
            "storefront_marketplace_sync_duration_seconds",
            "Marketplace sync run duration in seconds",
            ["platform"],
            buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
            registry=self.registry,
        )

        self.sync_orders_total = Counter(
            "storefront_marketplace_orders_total",
            "Marketplace orders processed by sync",
            ["platform", "outcome"],
            registry=self.registry,
        )

        # Affiliate metrics
        self.affiliate_clicks_total = Counter(
            "storefront_affiliate_clicks_total",
            "Tracked affiliate referral clicks",
            registry=self.registry,
        )

        self.affiliate_conversions_total = Counter(
            "storefront_affiliate_conversions_total",
            "Recorded affiliate conversions",
            ["attributed"],
            registry=self.registry,
        )

        self.affiliate_commission_total = Counter(
            "storefront_affiliate_commission_total",
            "Commission amount recorded for conversions",
            registry=self.registry,
        )

        logger.info("Prometheus metrics initialized")

    def track_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """
        Track HTTP request metrics.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: Normalized request path
            status_code: HTTP status code
            duration: Request duration in seconds
        """
        self.requests_total.labels(method=method, endpoint=endpoint, status_code=status_code).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def track_error(self, error_type: str, endpoint: str):
        self.errors_total.labels(error_type=error_type, endpoint=endpoint).inc()

    def track_sync_run(self, platform: str, status: str, duration: float,
                       imported: int = 0, updated: int = 0, skipped: int = 0, errors: int = 0):
        """Record a completed sync run and its per-order outcomes."""
        self.sync_runs_total.labels(platform=platform, status=status).inc()
        self.sync_duration.labels(platform=platform).observe(duration)

        for outcome, count in (("imported", imported), ("updated", updated),
                               ("skipped", skipped), ("error", errors)):
            if count:
                self.sync_orders_total.labels(platform=platform, outcome=outcome).inc(count)

    def track_affiliate_click(self):
        self.affiliate_clicks_total.inc()

    def track_affiliate_conversion(self, commission_amount: float, attributed: bool):
        self.affiliate_conversions_total.labels(attributed=str(attributed).lower()).inc()
        self.affiliate_commission_total.inc(max(commission_amount, 0.0))

    def export(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)


# Global metrics instance
_metrics: Optional[PrometheusMetrics] = None


def get_metrics() -> PrometheusMetrics:
    """Get global metrics instance."""
    global _metrics
    if _metrics is None:
        _metrics = PrometheusMetrics()
    return _metrics


def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path for metrics labels.

    Replaces generated ids with placeholders to prevent high cardinality.
    """
    path = _ORDER_ID_RE.sub("/{order_id}", path)
    path = _PREFIXED_ID_RE.sub("/{id}", path)
    return _NUMERIC_ID_RE.sub("/{id}", path)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware for automatic request metrics collection."""

    def __init__(self, app):
        super().__init__(app)
        self.metrics = get_metrics()

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as e:
            self.metrics.track_error(type(e).__name__, normalize_endpoint(request.url.path))
            raise
        finally:
            self.metrics.track_request(
                method=request.method,
                endpoint=normalize_endpoint(request.url.path),
                status_code=status_code,
                duration=time.time() - start_time,
            )


async def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint handler."""
    return Response(content=get_metrics().export(), media_type=CONTENT_TYPE_LATEST)
