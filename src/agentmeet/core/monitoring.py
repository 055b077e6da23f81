"""Prometheus metrics, Sentry integration, and provider call tracking.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- track_provider_call(): Context manager for video provider call metrics
- record_provisioning() / record_reconciliation(): saga outcome counters
- init_sentry(): Initialize Sentry with a user-aware before_send callback
- get_metrics_response(): Response for the /metrics endpoint
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import sentry_sdk
import structlog
from prometheus_client import REGISTRY, Counter, Histogram, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger(__name__)

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

# ── Provider Metrics ─────────────────────────────────────────────────────────

provider_requests_total = Counter(
    "provider_requests_total",
    "Total video provider API requests",
    ["operation", "status"],
)

provider_request_duration_seconds = Histogram(
    "provider_request_duration_seconds",
    "Video provider API request duration in seconds",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Meeting Metrics ──────────────────────────────────────────────────────────

meeting_provisioning_total = Counter(
    "meeting_provisioning_total",
    "Meeting create saga outcomes",
    ["outcome"],
)

meeting_reconciliation_total = Counter(
    "meeting_reconciliation_total",
    "Reconciliation outcomes for meetings stuck in provisioning",
    ["outcome"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    The endpoint label uses the matched route pattern (``/api/v1/meetings/{meeting_id}``)
    rather than the raw path so that ids do not blow up label cardinality.
    Skips the /metrics endpoint itself.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

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


# ── Provider Call Helper ─────────────────────────────────────────────────────


@asynccontextmanager
async def track_provider_call(operation: str) -> AsyncGenerator[None, None]:
    """Record count and duration of one provider operation.

    Usage:
        async with track_provider_call("upsert_users"):
            response = await client.post(...)
    """
    start_time = time.perf_counter()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        provider_requests_total.labels(operation=operation, status=status).inc()
        provider_request_duration_seconds.labels(operation=operation).observe(
            time.perf_counter() - start_time
        )


def record_provisioning(outcome: str) -> None:
    """Count a create saga outcome: ready, compensated, or compensation_failed."""
    meeting_provisioning_total.labels(outcome=outcome).inc()


def record_reconciliation(outcome: str) -> None:
    """Count a reconciliation outcome: rolled_back, ready, retry or abandoned."""
    meeting_reconciliation_total.labels(outcome=outcome).inc()


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK with user-aware event tagging.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Tag events with the request id and user id bound by LoggingMiddleware."""
        context = structlog.contextvars.get_contextvars()
        tags = event.setdefault("tags", {})
        for key in ("request_id", "user_id"):
            if context.get(key):
                tags[key] = context[key]
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
    logger.info("sentry.initialized", environment=environment)


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
