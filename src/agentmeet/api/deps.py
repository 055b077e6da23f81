"""FastAPI dependency injection for the authenticated caller and services.

Services are built once in the application lifespan and stored on
app.state; the helpers here fetch them and answer 503 when a service
failed to initialize.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from fastapi import HTTPException, Request, status

from src.agentmeet.core.exceptions import UnauthenticatedError
from src.agentmeet.core.security import Caller, caller_from_claims, verify_token

if TYPE_CHECKING:
    from src.agentmeet.agents.service import AgentService
    from src.agentmeet.meetings.service import MeetingService


async def get_current_user(request: Request) -> Caller:
    """Resolve the caller from the Bearer access token.

    Raises:
        UnauthenticatedError: Missing header or invalid token (mapped to 401).
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise UnauthenticatedError()

    payload = verify_token(auth_header[7:], token_type="access")
    caller = caller_from_claims(payload)
    structlog.contextvars.bind_contextvars(user_id=caller.id)
    return caller


def get_agent_service(request: Request) -> AgentService:
    """Retrieve AgentService from app.state, 503 if not available."""
    service = getattr(request.app.state, "agent_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Agent service not initialized",
        )
    return service


def get_meeting_service(request: Request) -> MeetingService:
    """Retrieve MeetingService from app.state, 503 if not available."""
    service = getattr(request.app.state, "meeting_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Meeting service not initialized",
        )
    return service
