"""Pydantic v2 schemas for the meeting lifecycle domain.

Defines the meeting status state machine, the read models returned to
callers (Meeting, MeetingWithAgent, MeetingPage) and the request models for
create/update/list.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.agentmeet.agents.schemas import Agent

# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingStatus(str, Enum):
    """Lifecycle status of a meeting."""

    UPCOMING = "upcoming"
    ACTIVE = "active"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ProvisioningState(str, Enum):
    """Whether the remote call side of a meeting has been set up."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"  # create reported failure; awaiting rollback


# ── State Machine ────────────────────────────────────────────────────────────

VALID_TRANSITIONS: dict[MeetingStatus, set[MeetingStatus]] = {
    MeetingStatus.UPCOMING: {MeetingStatus.ACTIVE, MeetingStatus.CANCELLED},
    MeetingStatus.ACTIVE: {MeetingStatus.PROCESSING},
    MeetingStatus.PROCESSING: {MeetingStatus.COMPLETED},
    MeetingStatus.COMPLETED: set(),  # Terminal
    MeetingStatus.CANCELLED: set(),  # Terminal
}


def can_transition(current: MeetingStatus, requested: MeetingStatus) -> bool:
    """True when requested is the current status or a legal next status."""
    return requested == current or requested in VALID_TRANSITIONS.get(current, set())


def allowed_predecessors(requested: MeetingStatus) -> set[MeetingStatus]:
    """Statuses a row may be in for an update to `requested` to apply."""
    return {requested} | {s for s, nxt in VALID_TRANSITIONS.items() if requested in nxt}


# ── Read Models ──────────────────────────────────────────────────────────────


class Meeting(BaseModel):
    """Meeting row as returned by create/update/remove."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    agent_id: str
    name: str
    status: MeetingStatus = MeetingStatus.UPCOMING
    started_at: datetime | None = None
    ended_at: datetime | None = None
    transcript_url: str | None = None
    recording_url: str | None = None
    summary: str | None = None
    provisioning_state: ProvisioningState = ProvisioningState.PENDING
    created_at: datetime
    updated_at: datetime


class MeetingWithAgent(Meeting):
    """Meeting joined with its agent plus the derived duration in seconds."""

    agent: Agent
    duration: float | None = None


class MeetingPage(BaseModel):
    """One page of a meeting listing."""

    items: list[MeetingWithAgent] = Field(default_factory=list)
    total: int
    total_pages: int


def compute_duration(started_at: datetime | None, ended_at: datetime | None) -> float | None:
    """Seconds between start and end; None while either bound is unset."""
    if started_at is None or ended_at is None:
        return None
    return (ended_at - started_at).total_seconds()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def ends_before_start(started_at: datetime | None, ended_at: datetime | None) -> bool:
    """True when both bounds are set and ended_at precedes started_at."""
    if started_at is None or ended_at is None:
        return False
    return _as_utc(ended_at) < _as_utc(started_at)


# ── Request Models ───────────────────────────────────────────────────────────


class MeetingCreate(BaseModel):
    """Input for meeting.create."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200, description="Meeting name")
    agent_id: str = Field(..., min_length=1, description="Agent joining the call")


class MeetingChanges(MeetingCreate):
    """Mutable meeting fields (the PUT body).

    name and agent_id are always replaced. Lifecycle fields are replaced only
    when present in the request (an explicit null clears them).
    """

    status: MeetingStatus | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    transcript_url: str | None = None
    recording_url: str | None = None
    summary: str | None = None

    @model_validator(mode="after")
    def _check_time_bounds(self) -> MeetingChanges:
        if ends_before_start(self.started_at, self.ended_at):
            raise ValueError("ended_at must not be earlier than started_at")
        return self


class MeetingUpdate(MeetingChanges):
    """Input for meeting.update."""

    id: str = Field(..., min_length=1)

    def changed_fields(self) -> dict:
        """Column values to write, excluding id and unset optional fields."""
        values = self.model_dump(exclude_unset=True, exclude={"id"})
        values["name"] = self.name
        values["agent_id"] = self.agent_id
        if "status" in values:
            if values["status"] is None:
                # status is NOT NULL; a null in the request means "leave as is"
                del values["status"]
            else:
                values["status"] = MeetingStatus(values["status"]).value
        return values


class MeetingListQuery(BaseModel):
    """Input for meeting.getMany. page_size bounds are checked by the service."""

    page: int = 1
    page_size: int = 10
    search: str | None = None
    agent_id: str | None = None
    status: MeetingStatus | None = None
