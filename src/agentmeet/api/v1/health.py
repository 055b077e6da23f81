"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready). Readiness checks
database connectivity and whether the video provider credentials and the
services on app.state are in place.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from src.agentmeet.config import get_settings
from src.agentmeet.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No dependencies are touched."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check database, provider configuration and service wiring."""
    settings = get_settings()
    checks: dict = {"database": "ok", "video_provider": "ok", "services": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    if not (settings.STREAM_VIDEO_API_KEY and settings.STREAM_VIDEO_API_SECRET):
        checks["video_provider"] = "not_configured"

    state = request.app.state
    if getattr(state, "agent_service", None) is None or getattr(state, "meeting_service", None) is None:
        checks["services"] = "error"

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: 200 when every dependency is usable, 503 otherwise."""
    checks = await _check_dependencies(request)
    all_healthy = (
        checks["database"] == "ok"
        and checks["video_provider"] == "ok"
        and checks["services"] == "ok"
    )

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )
