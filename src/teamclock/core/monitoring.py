"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- Identity sync metrics: run outcomes, per-record results, CRM directory calls
- track_sync_run(): Context manager timing one reconciliation run
- init_sentry(): Initialize Sentry with location-aware before_send callback
- get_metrics_response(): FastAPI route handler body for /metrics
"""

from __future__ import annotations

import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

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

# ── Identity Sync Metrics ────────────────────────────────────────────────────

identity_sync_runs_total = Counter(
    "identity_sync_runs_total",
    "Identity synchronization runs by outcome",
    ["outcome"],
)

identity_sync_records_total = Counter(
    "identity_sync_records_total",
    "Directory records processed by scope and result",
    ["scope", "result"],
)

identity_sync_duration_seconds = Histogram(
    "identity_sync_duration_seconds",
    "Identity synchronization run duration in seconds",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

crm_directory_requests_total = Counter(
    "crm_directory_requests_total",
    "CRM directory requests by API generation, scope and status",
    ["generation", "scope", "status"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


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

        # Route path pattern (set by the router) keeps label cardinality low
        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or request.url.path

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


# ── Sync Run Helper ──────────────────────────────────────────────────────────


@contextmanager
def track_sync_run() -> Generator[dict[str, Any], None, None]:
    """Time a reconciliation run and count its outcome.

    Usage:
        with track_sync_run() as tracker:
            run = await engine.run(...)
            tracker["outcome"] = "partial" if run.stats.errors else "success"

    Exceptions are re-raised and counted as outcome="error" unless the caller
    already set a more specific outcome (e.g. "rejected").
    """
    tracker: dict[str, Any] = {"outcome": "success"}
    start_time = time.perf_counter()
    try:
        yield tracker
    except Exception:
        if tracker["outcome"] == "success":
            tracker["outcome"] = "error"
        raise
    finally:
        identity_sync_duration_seconds.observe(time.perf_counter() - start_time)
        identity_sync_runs_total.labels(outcome=tracker["outcome"]).inc()


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK with location-aware event tagging.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Tag events with the location the request was made for."""
        query = (event.get("request") or {}).get("query_string") or ""
        if isinstance(query, str) and "locationId=" in query:
            location = query.split("locationId=", 1)[1].split("&", 1)[0]
            event.setdefault("tags", {})["location_id"] = location
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=before_send,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
