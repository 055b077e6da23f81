"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
error handlers, lifespan events for database and service initialization,
the health routes and the v1 API router.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.agentmeet.api.errors import register_exception_handlers
from src.agentmeet.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.agentmeet.api.v1 import health
from src.agentmeet.api.v1.router import router as v1_router
from src.agentmeet.config import Settings, get_settings
from src.agentmeet.core.database import close_db, get_session, init_db
from src.agentmeet.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry


def build_video_client(settings: Settings):
    """StreamVideoClient configured from settings."""
    from src.agentmeet.video.stream_client import StreamVideoClient

    return StreamVideoClient(
        api_key=settings.STREAM_VIDEO_API_KEY,
        api_secret=settings.STREAM_VIDEO_API_SECRET,
        base_url=settings.STREAM_VIDEO_BASE_URL,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        max_attempts=settings.PROVIDER_MAX_RETRIES,
        token_validity_seconds=settings.STREAM_TOKEN_VALIDITY_SECONDS,
        clock_skew_seconds=settings.STREAM_TOKEN_CLOCK_SKEW_SECONDS,
    )


def build_services(settings: Settings, session_factory=get_session) -> dict:
    """Wire repositories, the video client and services.

    Returns a dict with agent_service, meeting_service and reconciler, used by
    the lifespan and by scripts/reconcile_meetings.py.
    """
    from src.agentmeet.agents.repository import AgentRepository
    from src.agentmeet.agents.service import AgentService
    from src.agentmeet.meetings.reconciliation import MeetingReconciler
    from src.agentmeet.meetings.repository import MeetingRepository
    from src.agentmeet.meetings.service import MeetingService

    agent_repository = AgentRepository(session_factory=session_factory)
    meeting_repository = MeetingRepository(session_factory=session_factory)
    video_client = build_video_client(settings)

    meeting_service = MeetingService(
        repository=meeting_repository,
        agent_repository=agent_repository,
        video_client=video_client,
        settings=settings,
    )
    reconciler = MeetingReconciler(
        repository=meeting_repository,
        agent_repository=agent_repository,
        service=meeting_service,
        stale_seconds=settings.RECONCILIATION_STALE_SECONDS,
        batch_limit=settings.RECONCILIATION_BATCH_LIMIT,
        max_attempts=settings.RECONCILIATION_MAX_ATTEMPTS,
        interval_seconds=settings.RECONCILIATION_INTERVAL_SECONDS,
    )
    return {
        "agent_service": AgentService(
            agent_repository,
            owner_scoped_reads=settings.AGENT_READS_OWNER_SCOPED,
            min_page_size=settings.MIN_PAGE_SIZE,
            max_page_size=settings.MAX_PAGE_SIZE,
        ),
        "meeting_service": meeting_service,
        "reconciler": reconciler,
    }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, services and reconciliation; close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    if not (settings.STREAM_VIDEO_API_KEY and settings.STREAM_VIDEO_API_SECRET):
        log.warning("startup.video_provider_not_configured")

    # ── Services ────────────────────────────────────────────────────────
    try:
        services = build_services(settings)
        app.state.agent_service = services["agent_service"]
        app.state.meeting_service = services["meeting_service"]
        app.state.reconciler = services["reconciler"]
        log.info("startup.services_initialized")
    except Exception:
        log.warning("startup.services_init_failed", exc_info=True)
        app.state.agent_service = None
        app.state.meeting_service = None
        app.state.reconciler = None

    # ── Reconciliation background task ─────────────────────────────────
    app.state.reconciler_task = None
    reconciler = app.state.reconciler
    if reconciler is not None and settings.RECONCILIATION_ENABLED:
        app.state.reconciler_task = asyncio.create_task(
            reconciler.run_loop(), name="meeting_reconciler"
        )
        log.info(
            "startup.reconciler_started",
            interval_seconds=settings.RECONCILIATION_INTERVAL_SECONDS,
        )

    yield

    # ── Shutdown ────────────────────────────────────────────────────────
    reconciler_task = app.state.reconciler_task
    if reconciler_task and not reconciler_task.done():
        reconciler.stop()
        reconciler_task.cancel()
        try:
            await reconciler_task
        except asyncio.CancelledError:
            pass
        log.info("shutdown.reconciler_stopped")

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="AgentMeet API",
        version="0.1.0",
        description="Meetings between users and AI agents, backed by Stream Video calls",
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(health.router)
    app.include_router(v1_router, prefix="/api/v1")

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
