"""AgentService -- owner-scoped CRUD over agents."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from src.agentmeet.agents.schemas import (
    Agent,
    AgentCreate,
    AgentListQuery,
    AgentPage,
    AgentUpdate,
)
from src.agentmeet.core.exceptions import NotFoundError
from src.agentmeet.core.query import page_window, total_pages, validate_page_request
from src.agentmeet.core.security import Caller

if TYPE_CHECKING:
    from src.agentmeet.agents.repository import AgentRepository

logger = structlog.get_logger(__name__)


class AgentService:
    """Create, read and update agents on behalf of a caller.

    Writes are always scoped to the caller. Reads are scoped to the caller
    when owner_scoped_reads is true; otherwise any agent is readable by any
    authenticated caller.

    Args:
        repository: AgentRepository (or a test double with the same interface).
        owner_scoped_reads: Apply the ownership predicate to get/list.
        min_page_size: Smallest accepted page_size for listings.
        max_page_size: Largest accepted page_size for listings.
    """

    def __init__(
        self,
        repository: AgentRepository,
        owner_scoped_reads: bool = True,
        *,
        min_page_size: int = 1,
        max_page_size: int = 100,
    ) -> None:
        self._repository = repository
        self._owner_scoped_reads = owner_scoped_reads
        self._min_page_size = min_page_size
        self._max_page_size = max_page_size

    def read_scope(self, caller: Caller) -> str | None:
        """Owner id to filter reads by, or None for global reads."""
        return caller.id if self._owner_scoped_reads else None

    async def get_one(self, agent_id: str, caller: Caller) -> Agent:
        agent = await self._repository.get_agent(agent_id, self.read_scope(caller))
        if agent is None:
            raise NotFoundError("Agent", {"id": agent_id})
        return agent

    async def get_many(self, query: AgentListQuery, caller: Caller) -> AgentPage:
        """One page of agents with meeting counts.

        Raises:
            ValidationError: page or page_size out of bounds (checked before
                any storage access).
        """
        validate_page_request(
            query.page,
            query.page_size,
            min_page_size=self._min_page_size,
            max_page_size=self._max_page_size,
        )
        window = page_window(query.page, query.page_size)
        items, total = await self._repository.list_page(self.read_scope(caller), query, window)
        return AgentPage(items=items, total=total, total_pages=total_pages(total, query.page_size))

    async def create(self, data: AgentCreate, caller: Caller) -> Agent:
        agent = await self._repository.create_agent(caller.id, data)
        logger.info("agent.created", agent_id=agent.id, user_id=caller.id)
        return agent

    async def update(self, data: AgentUpdate, caller: Caller) -> Agent:
        """Replace name/instructions; NotFound when the caller does not own the id."""
        agent = await self._repository.update_agent(caller.id, data)
        if agent is None:
            raise NotFoundError("Agent", {"id": data.id})
        logger.info("agent.updated", agent_id=agent.id, user_id=caller.id)
        return agent
