"""
Metrics
=======

Prometheus counters and histograms for HTTP traffic, webhook
reconciliation and entitlement decisions.

Exposed at ``GET /metrics`` when ``METRICS_ENABLED`` is set.
"""

import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)

from app.config import settings


# =============================================================================
# HTTP
# =============================================================================

HTTP_REQUESTS = Counter(
    "http_requests_total",
    "HTTP requests by method, route pattern and status code",
    ["method", "route", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency by method and route pattern",
    ["method", "route"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)


# =============================================================================
# Billing / Entitlements
# =============================================================================

WEBHOOK_EVENTS = Counter(
    "billing_webhook_events_total",
    "Webhook deliveries by event kind and reconciliation outcome",
    ["provider", "kind", "outcome"],
)

WEBHOOK_SIGNATURE_FAILURES = Counter(
    "billing_webhook_signature_failures_total",
    "Webhook deliveries rejected by signature verification",
    ["provider"],
)

ENTITLEMENT_DECISIONS = Counter(
    "entitlement_decisions_total",
    "Access decisions by reason",
    ["reason"],
)

RESOLVER_FALLBACKS = Counter(
    "subscription_resolver_fallbacks_total",
    "Subscription resolutions that failed and fell back to FREE",
)


class PrometheusMiddleware:
    """
    Raw ASGI middleware recording request count and latency.

    Labels use the matched route pattern (e.g. ``/api/v1/access/route``)
    so path parameters do not explode label cardinality.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or not settings.METRICS_ENABLED:
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500  # default until we capture the real one

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            route = scope.get("route")
            route_path = route.path if route else "unmatched"
            method = scope.get("method", "")

            HTTP_REQUESTS.labels(method, route_path, str(status_code)).inc()
            HTTP_REQUEST_DURATION.labels(method, route_path).observe(
                time.perf_counter() - start
            )


def render_metrics() -> tuple[bytes, str]:
    """Current metrics in the Prometheus text format, with its content type."""
    return generate_latest(), CONTENT_TYPE_LATEST
