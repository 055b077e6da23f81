"""REST API endpoints for meetings and call tokens.

All endpoints require an authenticated caller and only ever touch the
caller's own meetings.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from src.agentmeet.api.deps import get_current_user, get_meeting_service
from src.agentmeet.config import get_settings
from src.agentmeet.core.security import Caller
from src.agentmeet.meetings.schemas import (
    Meeting,
    MeetingChanges,
    MeetingCreate,
    MeetingListQuery,
    MeetingPage,
    MeetingStatus,
    MeetingUpdate,
    MeetingWithAgent,
)
from src.agentmeet.meetings.service import MeetingService

router = APIRouter(prefix="/meetings", tags=["meetings"])


class TokenResponse(BaseModel):
    """Signed user token for the video SDK."""

    token: str


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/token", response_model=TokenResponse)
async def generate_token(
    caller: Caller = Depends(get_current_user),
    service: MeetingService = Depends(get_meeting_service),
) -> TokenResponse:
    """Upsert the caller on the video provider and return a user token."""
    token = await service.generate_token(caller)
    return TokenResponse(token=token)


@router.post("", response_model=Meeting, status_code=201)
async def create_meeting(
    body: MeetingCreate,
    caller: Caller = Depends(get_current_user),
    service: MeetingService = Depends(get_meeting_service),
) -> Meeting:
    """Create a meeting and provision its call."""
    return await service.create(body, caller)


@router.get("", response_model=MeetingPage)
async def list_meetings(
    page: int | None = Query(default=None),
    page_size: int | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    agent_id: str | None = Query(default=None),
    status: MeetingStatus | None = Query(default=None),
    caller: Caller = Depends(get_current_user),
    service: MeetingService = Depends(get_meeting_service),
) -> MeetingPage:
    """One page of the caller's meetings, newest first."""
    settings = get_settings()
    query = MeetingListQuery(
        page=settings.DEFAULT_PAGE if page is None else page,
        page_size=settings.DEFAULT_PAGE_SIZE if page_size is None else page_size,
        search=search,
        agent_id=agent_id,
        status=status,
    )
    return await service.get_many(query, caller)


@router.get("/{meeting_id}", response_model=MeetingWithAgent)
async def get_meeting(
    meeting_id: str,
    caller: Caller = Depends(get_current_user),
    service: MeetingService = Depends(get_meeting_service),
) -> MeetingWithAgent:
    return await service.get_one(meeting_id, caller)


@router.put("/{meeting_id}", response_model=Meeting)
async def update_meeting(
    meeting_id: str,
    body: MeetingChanges,
    caller: Caller = Depends(get_current_user),
    service: MeetingService = Depends(get_meeting_service),
) -> Meeting:
    """Update an owned meeting. Omitted lifecycle fields are left as they are."""
    data = MeetingUpdate(id=meeting_id, **body.model_dump(exclude_unset=True))
    return await service.update(data, caller)


@router.delete("/{meeting_id}", response_model=Meeting)
async def remove_meeting(
    meeting_id: str,
    caller: Caller = Depends(get_current_user),
    service: MeetingService = Depends(get_meeting_service),
) -> Meeting:
    """Delete an owned meeting and return its last state."""
    return await service.remove(meeting_id, caller)
