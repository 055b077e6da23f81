"""Pydantic v2 schemas for agents."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class Agent(BaseModel):
    """Agent as returned to callers."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    name: str
    instructions: str
    created_at: datetime
    updated_at: datetime


class AgentWithMeetingCount(Agent):
    """Agent row in a listing, with the number of meetings that use it."""

    meeting_count: int = 0


class AgentPage(BaseModel):
    """One page of an agent listing."""

    items: list[AgentWithMeetingCount] = Field(default_factory=list)
    total: int
    total_pages: int


class AgentListQuery(BaseModel):
    """Input for agent.getMany. page_size bounds are checked by the service."""

    page: int = 1
    page_size: int = 10
    search: str | None = None


class AgentCreate(BaseModel):
    """Input for agent.create."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200, description="Agent display name")
    instructions: str = Field(..., min_length=1, description="Behaviour instructions for the persona")


class AgentUpdate(AgentCreate):
    """Input for agent.update -- full replacement of the mutable fields."""

    id: str = Field(..., min_length=1)
