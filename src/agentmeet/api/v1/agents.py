"""REST API endpoints for agents.

All endpoints require an authenticated caller. Writes are scoped to the
caller; read scoping follows AGENT_READS_OWNER_SCOPED.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from src.agentmeet.agents.schemas import (
    Agent,
    AgentCreate,
    AgentListQuery,
    AgentPage,
    AgentUpdate,
)
from src.agentmeet.agents.service import AgentService
from src.agentmeet.api.deps import get_agent_service, get_current_user
from src.agentmeet.config import get_settings
from src.agentmeet.core.security import Caller

router = APIRouter(prefix="/agents", tags=["agents"])


@router.post("", response_model=Agent, status_code=201)
async def create_agent(
    body: AgentCreate,
    caller: Caller = Depends(get_current_user),
    service: AgentService = Depends(get_agent_service),
) -> Agent:
    """Create an agent owned by the caller."""
    return await service.create(body, caller)


@router.get("", response_model=AgentPage)
async def list_agents(
    page: int | None = Query(default=None),
    page_size: int | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    caller: Caller = Depends(get_current_user),
    service: AgentService = Depends(get_agent_service),
) -> AgentPage:
    """One page of agents, newest first, optionally filtered by name."""
    settings = get_settings()
    query = AgentListQuery(
        page=settings.DEFAULT_PAGE if page is None else page,
        page_size=settings.DEFAULT_PAGE_SIZE if page_size is None else page_size,
        search=search,
    )
    return await service.get_many(query, caller)


@router.get("/{agent_id}", response_model=Agent)
async def get_agent(
    agent_id: str,
    caller: Caller = Depends(get_current_user),
    service: AgentService = Depends(get_agent_service),
) -> Agent:
    return await service.get_one(agent_id, caller)


@router.put("/{agent_id}", response_model=Agent)
async def update_agent(
    agent_id: str,
    body: AgentCreate,
    caller: Caller = Depends(get_current_user),
    service: AgentService = Depends(get_agent_service),
) -> Agent:
    """Replace an owned agent's name and instructions."""
    data = AgentUpdate(id=agent_id, name=body.name, instructions=body.instructions)
    return await service.update(data, caller)
