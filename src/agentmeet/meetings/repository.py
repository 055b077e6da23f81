"""Meeting repository -- async persistence for meetings.

Uses the session_factory callable pattern shared with AgentRepository.
Every caller-facing statement carries the owner predicate, and the
ownership-checked writes (update, delete) are single conditional statements
with RETURNING so there is no read-then-write window.

Rows flagged provisioning_state=failed are hidden from every owner-scoped
statement; they only wait for MeetingReconciler to roll them back.

The provisioning helpers (mark_ready, mark_failed, list_stale_pending,
list_failed, increment_attempts, delete_by_id) are used by the create saga
and MeetingReconciler and are not owner scoped.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.agentmeet.agents.models import AgentModel
from src.agentmeet.agents.schemas import Agent
from src.agentmeet.core.exceptions import NotFoundError
from src.agentmeet.core.query import (
    PageWindow,
    agent_filters,
    meeting_filters,
    meeting_ordering,
    owned_meeting,
)
from src.agentmeet.meetings.models import MeetingModel
from src.agentmeet.meetings.schemas import (
    Meeting,
    MeetingCreate,
    MeetingListQuery,
    MeetingStatus,
    MeetingUpdate,
    MeetingWithAgent,
    ProvisioningState,
    allowed_predecessors,
    compute_duration,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_meeting(model: MeetingModel) -> Meeting:
    return Meeting.model_validate(model)


def _row_to_meeting_with_agent(meeting: MeetingModel, agent: AgentModel) -> MeetingWithAgent:
    """Combine a joined (meeting, agent) row into the read model."""
    base = Meeting.model_validate(meeting).model_dump()
    return MeetingWithAgent(
        **base,
        agent=Agent.model_validate(agent),
        duration=compute_duration(meeting.started_at, meeting.ended_at),
    )


class MeetingRepository:
    """Async persistence for meetings.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Create ──────────────────────────────────────────────────────────────

    async def create_pending(
        self, user_id: str, data: MeetingCreate, agent_owner_id: str | None
    ) -> tuple[Meeting, Agent]:
        """Resolve the agent and insert a pending meeting in one transaction.

        Args:
            user_id: Owner of the new meeting.
            data: Validated create input.
            agent_owner_id: Ownership predicate for the agent lookup, or None
                for unscoped agent reads.

        Returns:
            The inserted Meeting and the resolved Agent.

        Raises:
            NotFoundError: The agent is not visible to the caller.
        """
        async for session in self._session_factory():
            agent_stmt = select(AgentModel).where(
                AgentModel.id == data.agent_id, *agent_filters(agent_owner_id)
            )
            agent_model = (await session.execute(agent_stmt)).scalar_one_or_none()
            if agent_model is None:
                raise NotFoundError("Agent", {"id": data.agent_id})

            model = MeetingModel(
                user_id=user_id,
                agent_id=agent_model.id,
                name=data.name,
                status=MeetingStatus.UPCOMING.value,
                provisioning_state=ProvisioningState.PENDING.value,
                provisioning_attempts=0,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model), Agent.model_validate(agent_model)

    # ── Read ────────────────────────────────────────────────────────────────

    async def get_with_agent(self, meeting_id: str, owner_id: str) -> MeetingWithAgent | None:
        """Get an owned meeting joined with its agent."""
        async for session in self._session_factory():
            stmt = (
                select(MeetingModel, AgentModel)
                .join(AgentModel, MeetingModel.agent_id == AgentModel.id)
                .where(*owned_meeting(meeting_id, owner_id))
            )
            row = (await session.execute(stmt)).first()
            if row is None:
                return None
            return _row_to_meeting_with_agent(row[0], row[1])

    async def list_page(
        self, owner_id: str, query: MeetingListQuery, window: PageWindow
    ) -> tuple[list[MeetingWithAgent], int]:
        """One page of owned meetings plus the total matching count.

        The count and the page use the same predicates so that the page sizes
        across all pages add up to the total.
        """
        filters = meeting_filters(
            owner_id,
            search=query.search,
            agent_id=query.agent_id,
            status=query.status,
        )
        async for session in self._session_factory():
            count_stmt = (
                select(func.count())
                .select_from(MeetingModel)
                .join(AgentModel, MeetingModel.agent_id == AgentModel.id)
                .where(*filters)
            )
            total = (await session.execute(count_stmt)).scalar_one()

            page_stmt = (
                select(MeetingModel, AgentModel)
                .join(AgentModel, MeetingModel.agent_id == AgentModel.id)
                .where(*filters)
                .order_by(*meeting_ordering())
                .limit(window.limit)
                .offset(window.offset)
            )
            rows = (await session.execute(page_stmt)).all()
            items = [_row_to_meeting_with_agent(m, a) for m, a in rows]
            return items, int(total)

    async def get_owned(self, meeting_id: str, owner_id: str) -> Meeting | None:
        """An owned meeting without its agent, or None if no such row."""
        async for session in self._session_factory():
            stmt = select(MeetingModel).where(*owned_meeting(meeting_id, owner_id))
            model = (await session.execute(stmt)).scalar_one_or_none()
            return _model_to_meeting(model) if model is not None else None

    # ── Update / Delete ─────────────────────────────────────────────────────

    async def update_meeting(
        self, owner_id: str, data: MeetingUpdate, agent_owner_id: str | None
    ) -> Meeting | None:
        """Apply an update with one conditional UPDATE ... RETURNING.

        The row must match (id, owner_id), the target agent must be visible
        under agent_owner_id, and when a status is supplied the current
        status must be one of its allowed predecessors. When only one time
        bound is supplied it must not cross the stored other bound.

        Returns:
            The updated Meeting, or None if any predicate failed.
        """
        values = data.changed_fields()
        values["updated_at"] = datetime.now(timezone.utc)

        agent_visible = (
            select(AgentModel.id)
            .where(AgentModel.id == data.agent_id, *agent_filters(agent_owner_id))
            .exists()
        )
        predicates = [*owned_meeting(data.id, owner_id), agent_visible]
        if "status" in values:
            predecessors = allowed_predecessors(MeetingStatus(values["status"]))
            predicates.append(MeetingModel.status.in_([s.value for s in predecessors]))

        started_at, ended_at = values.get("started_at"), values.get("ended_at")
        if ended_at is not None and "started_at" not in values:
            predicates.append(
                or_(MeetingModel.started_at.is_(None), MeetingModel.started_at <= ended_at)
            )
        if started_at is not None and "ended_at" not in values:
            predicates.append(
                or_(MeetingModel.ended_at.is_(None), MeetingModel.ended_at >= started_at)
            )

        async for session in self._session_factory():
            stmt = (
                update(MeetingModel)
                .where(*predicates)
                .values(**values)
                .returning(MeetingModel)
                .execution_options(synchronize_session=False)
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            meeting = _model_to_meeting(model) if model is not None else None
            await session.commit()
            return meeting

    async def delete_meeting(self, meeting_id: str, owner_id: str) -> Meeting | None:
        """Delete an owned meeting, returning its prior state."""
        async for session in self._session_factory():
            stmt = (
                delete(MeetingModel)
                .where(*owned_meeting(meeting_id, owner_id))
                .returning(MeetingModel)
                .execution_options(synchronize_session=False)
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            meeting = _model_to_meeting(model) if model is not None else None
            await session.commit()
            return meeting

    # ── Provisioning ────────────────────────────────────────────────────────

    async def mark_ready(self, meeting_id: str) -> Meeting | None:
        """Flip a pending meeting to ready. None if the row is gone or not pending."""
        async for session in self._session_factory():
            stmt = (
                update(MeetingModel)
                .where(
                    MeetingModel.id == meeting_id,
                    MeetingModel.provisioning_state == ProvisioningState.PENDING.value,
                )
                .values(
                    provisioning_state=ProvisioningState.READY.value,
                    updated_at=datetime.now(timezone.utc),
                )
                .returning(MeetingModel)
                .execution_options(synchronize_session=False)
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            meeting = _model_to_meeting(model) if model is not None else None
            await session.commit()
            return meeting

    async def mark_failed(self, meeting_id: str) -> bool:
        """Flag a meeting whose create was reported as failed. False if the row is gone."""
        async for session in self._session_factory():
            stmt = (
                update(MeetingModel)
                .where(MeetingModel.id == meeting_id)
                .values(
                    provisioning_state=ProvisioningState.FAILED.value,
                    updated_at=datetime.now(timezone.utc),
                )
                .returning(MeetingModel.id)
                .execution_options(synchronize_session=False)
            )
            flagged = (await session.execute(stmt)).scalar_one_or_none()
            await session.commit()
            return flagged is not None

    async def list_failed(self, limit: int) -> list[Meeting]:
        """Meetings flagged failed, oldest first."""
        async for session in self._session_factory():
            stmt = (
                select(MeetingModel)
                .where(MeetingModel.provisioning_state == ProvisioningState.FAILED.value)
                .order_by(MeetingModel.created_at.asc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_model_to_meeting(m) for m in result.scalars().all()]

    async def delete_by_id(self, meeting_id: str) -> bool:
        """Delete a meeting regardless of owner (compensation path)."""
        async for session in self._session_factory():
            stmt = (
                delete(MeetingModel)
                .where(MeetingModel.id == meeting_id)
                .returning(MeetingModel.id)
            )
            deleted = (await session.execute(stmt)).scalar_one_or_none()
            await session.commit()
            return deleted is not None

    async def list_stale_pending(self, older_than_seconds: int, limit: int) -> list[Meeting]:
        """Pending meetings created more than older_than_seconds ago, oldest first."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        async for session in self._session_factory():
            stmt = (
                select(MeetingModel)
                .where(
                    MeetingModel.provisioning_state == ProvisioningState.PENDING.value,
                    MeetingModel.created_at < cutoff,
                )
                .order_by(MeetingModel.created_at.asc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_model_to_meeting(m) for m in result.scalars().all()]

    async def increment_attempts(self, meeting_id: str) -> int:
        """Bump provisioning_attempts and return the new value (0 if the row is gone)."""
        async for session in self._session_factory():
            stmt = (
                update(MeetingModel)
                .where(MeetingModel.id == meeting_id)
                .values(provisioning_attempts=MeetingModel.provisioning_attempts + 1)
                .returning(MeetingModel.provisioning_attempts)
                .execution_options(synchronize_session=False)
            )
            attempts = (await session.execute(stmt)).scalar_one_or_none()
            await session.commit()
            return attempts or 0
