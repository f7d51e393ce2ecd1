"""Prometheus metrics, Sentry integration, and remote call tracking.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- init_sentry(): Initialize Sentry for unhandled error reporting
- track_remote_call(): Context manager for speech/completion/token call metrics
- record_tick(): Counter helper for pipeline timer ticks
- get_metrics_response(): FastAPI route handler for /metrics
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import sentry_sdk
from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

METRICS_PATH = "/metrics"

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

# ── Remote Call Metrics ──────────────────────────────────────────────────────

remote_calls_total = Counter(
    "remote_calls_total",
    "Total outbound calls to speech, completion and token endpoints",
    ["service", "status"],
)

remote_call_duration_seconds = Histogram(
    "remote_call_duration_seconds",
    "Outbound remote call duration in seconds",
    ["service"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

# ── Pipeline Metrics ─────────────────────────────────────────────────────────

pipeline_ticks_total = Counter(
    "pipeline_ticks_total",
    "Timer ticks by stage and outcome",
    ["stage", "outcome"],
)

active_meetings = Gauge(
    "active_meetings",
    "Number of meetings with armed pipeline timers",
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records request count and latency per route template.

    Labels use the matched route (``/meetings/{meeting_id}``) rather than the
    raw path so per-meeting URLs do not create a series each. Requests that
    match no route are counted under ``unmatched``; /metrics is not counted.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == METRICS_PATH:
            return await call_next(request)

        started = time.perf_counter()
        status_code = "500"
        try:
            response = await call_next(request)
            status_code = str(response.status_code)
            return response
        finally:
            endpoint = _route_template(request)
            http_requests_total.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code,
            ).inc()
            http_request_duration_seconds.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(time.perf_counter() - started)


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


# ── Remote Call Helper ───────────────────────────────────────────────────────


@asynccontextmanager
async def track_remote_call(service: str) -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that tracks one outbound remote call attempt.

    Usage:
        async with track_remote_call("speech") as tracker:
            response = await client.post(...)
            tracker["status"] = str(response.status_code)

    Records duration and a count labelled with ``tracker["status"]``
    (``"error"`` if the block raised, ``"ok"`` if left unset).
    """
    tracker: dict[str, Any] = {"status": "ok"}
    start_time = time.perf_counter()

    try:
        yield tracker
    except Exception:
        tracker["status"] = "error"
        raise
    finally:
        remote_call_duration_seconds.labels(service=service).observe(
            time.perf_counter() - start_time
        )
        remote_calls_total.labels(service=service, status=tracker["status"]).inc()


def record_tick(stage: str, outcome: str) -> None:
    """Count one pipeline timer tick (stage: transcription|summary)."""
    pipeline_ticks_total.labels(stage=stage, outcome=outcome).inc()


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Report unhandled request and tick errors to Sentry.

    Tracing is sampled at 10% in production and fully elsewhere.
    """
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1 if environment == "production" else 1.0,
        send_default_pii=False,
        integrations=[StarletteIntegration(), FastApiIntegration()],
    )
    sentry_sdk.set_tag("service", "meeting-recap")


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
