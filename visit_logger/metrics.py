"""
Prometheus metrics for the visit logger.

Uses a dedicated registry carrying the default process, platform and GC
collectors plus the service's own request and visit metrics. The names here
are referenced by the PrometheusRule in modules/observability.
"""

import time
from typing import Tuple

from fastapi import Request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)
from prometheus_client import gc_collector, platform_collector, process_collector
from starlette.middleware.base import BaseHTTPMiddleware

REGISTRY = CollectorRegistry()
process_collector.ProcessCollector(registry=REGISTRY)
platform_collector.PlatformCollector(registry=REGISTRY)
gc_collector.GCCollector(registry=REGISTRY)

HTTP_REQUESTS_TOTAL = Counter(
    "visit_logger_http_requests_total",
    "Total number of HTTP requests",
    ["method", "path", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION = Histogram(
    "visit_logger_http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=REGISTRY,
)

VISITS_RECORDED_TOTAL = Counter(
    "visit_logger_visits_recorded_total",
    "Visits the service attempted to persist",
    ["status"],
    registry=REGISTRY,
)

METRICS_PATH = "/metrics"


def render_metrics() -> Tuple[bytes, str]:
    """Current metrics in the Prometheus text exposition format."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


def _route_template(request: Request) -> str:
    # Label by route template so unknown paths do not explode cardinality
    route = request.scope.get("route")
    return getattr(route, "path", "unmatched")


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Record count and latency for every request except the scrape itself."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == METRICS_PATH:
            return await call_next(request)

        start_time = time.perf_counter()
        status = "500"
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            path = _route_template(request)
            HTTP_REQUEST_DURATION.labels(method=request.method, path=path).observe(
                time.perf_counter() - start_time
            )
            HTTP_REQUESTS_TOTAL.labels(method=request.method, path=path, status=status).inc()
