"""Agent repository -- async CRUD for agents.

Uses the session_factory callable pattern shared with MeetingRepository.
Ownership is enforced in the statement predicates: update is a single
conditional UPDATE ... RETURNING on (id, user_id), never read-then-write.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.agentmeet.agents.models import AgentModel
from src.agentmeet.agents.schemas import (
    Agent,
    AgentCreate,
    AgentListQuery,
    AgentUpdate,
    AgentWithMeetingCount,
)
from src.agentmeet.core.query import (
    PageWindow,
    agent_filters,
    agent_meeting_counts,
    agent_ordering,
)

logger = structlog.get_logger(__name__)


class AgentRepository:
    """Async CRUD operations for agents.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def create_agent(self, user_id: str, data: AgentCreate) -> Agent:
        """Insert a new agent owned by user_id."""
        async for session in self._session_factory():
            model = AgentModel(
                user_id=user_id,
                name=data.name,
                instructions=data.instructions,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return Agent.model_validate(model)

    async def get_agent(self, agent_id: str, owner_id: str | None) -> Agent | None:
        """Get an agent by id; owner_id=None skips the ownership predicate."""
        async for session in self._session_factory():
            stmt = select(AgentModel).where(
                AgentModel.id == agent_id, *agent_filters(owner_id)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return Agent.model_validate(model)

    async def list_page(
        self, owner_id: str | None, query: AgentListQuery, window: PageWindow
    ) -> tuple[list[AgentWithMeetingCount], int]:
        """One page of agents, newest first, each with its meeting count.

        Returns:
            (items, total) where total counts every agent matching the filters.
        """
        filters = agent_filters(owner_id, search=query.search)
        counts = agent_meeting_counts()
        async for session in self._session_factory():
            count_stmt = select(func.count()).select_from(AgentModel).where(*filters)
            total = (await session.execute(count_stmt)).scalar_one()

            page_stmt = (
                select(AgentModel, func.coalesce(counts.c.meeting_count, 0))
                .outerjoin(counts, counts.c.agent_id == AgentModel.id)
                .where(*filters)
                .order_by(*agent_ordering())
                .limit(window.limit)
                .offset(window.offset)
            )
            rows = (await session.execute(page_stmt)).all()
            items = [
                AgentWithMeetingCount(
                    **Agent.model_validate(model).model_dump(), meeting_count=int(meeting_count)
                )
                for model, meeting_count in rows
            ]
            return items, int(total)

    async def update_agent(self, owner_id: str, data: AgentUpdate) -> Agent | None:
        """Replace name/instructions on the row matching (id, owner_id).

        Returns:
            Updated Agent, or None if no row matched.
        """
        async for session in self._session_factory():
            stmt = (
                update(AgentModel)
                .where(AgentModel.id == data.id, AgentModel.user_id == owner_id)
                .values(
                    name=data.name,
                    instructions=data.instructions,
                    updated_at=datetime.now(timezone.utc),
                )
                .returning(AgentModel)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            agent = Agent.model_validate(model) if model is not None else None
            await session.commit()
            return agent
