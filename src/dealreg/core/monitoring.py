"""Prometheus metrics for HTTP traffic and deal evaluation outcomes.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- Domain counters incremented by the engines (validations, conflicts,
  approval actions, pricing calculations)
- get_metrics_response(): Prometheus exposition for the /metrics route
"""

from __future__ import annotations

import time

from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Deal Evaluation Metrics ──────────────────────────────────────────────────

deal_validations_total = Counter(
    "deal_validations_total",
    "Deal validations by outcome",
    ["outcome"],
)

deal_conflicts_detected_total = Counter(
    "deal_conflicts_detected_total",
    "Conflicts detected between deals",
    ["severity"],
)

approval_actions_total = Counter(
    "approval_actions_total",
    "Approval workflow actions processed",
    ["action", "outcome"],
)

pricing_calculations_total = Counter(
    "pricing_calculations_total",
    "Product price calculations",
    ["status"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


def route_template(request: Request) -> str:
    """Full route pattern for a request, e.g. /api/v1/deals/{deal_id}/evaluate.

    The matched route may carry only the path relative to the router it was
    included into. The shortest trailing run of URL segments its regex accepts
    is the route-relative part, and the segments before it are the prefix.
    Unrouted requests fall back to the raw path.
    """
    path = request.url.path
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    path_regex = getattr(route, "path_regex", None)
    if template is None or path_regex is None:
        return path

    segments = path.split("/")
    for start in range(len(segments) - 1, 0, -1):
        if path_regex.match("/" + "/".join(segments[start:])):
            return "/".join(segments[:start]) + template
    return template


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        endpoint = route_template(request)

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
