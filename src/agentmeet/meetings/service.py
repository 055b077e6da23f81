"""MeetingService -- meeting lifecycle on behalf of an authenticated caller.

Creating a meeting spans two systems: the local row and the remote Stream
Video call (the call id is the meeting id). create() runs as a saga:

1. insert the row as provisioning_state=pending (agent resolved in the same
   transaction, so a missing agent fails before any remote side effect)
2. upsert the caller as a call participant
3. get-or-create the call
4. upsert the agent as a call participant

On success the row is marked ready. On a provider failure the row is flagged
failed (hidden from the owner), the completed steps are compensated (remote
call deleted, row deleted) and the provider error is raised. If compensation
itself fails, MeetingReconciler rolls the failed row back later. Only rows
still pending (the process died mid-saga) are ever completed by it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import SQLAlchemyError

from src.agentmeet.agents.schemas import Agent
from src.agentmeet.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    ProviderError,
    ValidationError,
)
from src.agentmeet.core.monitoring import record_provisioning
from src.agentmeet.core.query import page_window, total_pages, validate_page_request
from src.agentmeet.core.security import Caller
from src.agentmeet.meetings.schemas import (
    Meeting,
    MeetingCreate,
    MeetingListQuery,
    MeetingPage,
    MeetingUpdate,
    MeetingWithAgent,
    can_transition,
    ends_before_start,
)
from src.agentmeet.video.avatar import AvatarVariant, generate_avatar_uri
from src.agentmeet.video.stream_client import ProviderUser

if TYPE_CHECKING:
    from src.agentmeet.agents.repository import AgentRepository
    from src.agentmeet.config import Settings
    from src.agentmeet.meetings.repository import MeetingRepository
    from src.agentmeet.video.stream_client import StreamVideoClient

logger = structlog.get_logger(__name__)


class MeetingService:
    """Owner-scoped meeting operations plus call provisioning.

    Args:
        repository: MeetingRepository (or a test double with the same interface).
        agent_repository: AgentRepository, used to diagnose failed updates.
        video_client: StreamVideoClient (or an AsyncMock in tests).
        settings: Application settings (call type, call settings, page bounds,
            agent read scoping, avatar base URL).
    """

    def __init__(
        self,
        repository: MeetingRepository,
        agent_repository: AgentRepository,
        video_client: StreamVideoClient,
        settings: Settings,
    ) -> None:
        self._repository = repository
        self._agent_repository = agent_repository
        self._video = video_client
        self._settings = settings

    def _agent_scope(self, owner_id: str) -> str | None:
        return owner_id if self._settings.AGENT_READS_OWNER_SCOPED else None

    # ── Participants ────────────────────────────────────────────────────────

    def caller_participant(self, caller: Caller) -> ProviderUser:
        image = caller.image or generate_avatar_uri(
            caller.name, AvatarVariant.INITIALS, self._settings.AVATAR_BASE_URL
        )
        return ProviderUser(id=caller.id, name=caller.name, role="admin", image=image)

    def agent_participant(self, agent: Agent) -> ProviderUser:
        image = generate_avatar_uri(
            agent.name, AvatarVariant.BOTTTS_NEUTRAL, self._settings.AVATAR_BASE_URL
        )
        return ProviderUser(id=agent.id, name=agent.name, role="user", image=image)

    # ── Provisioning ────────────────────────────────────────────────────────

    async def create_call(self, meeting: Meeting) -> None:
        """Get-or-create the remote call for a meeting (idempotent on meeting id)."""
        await self._video.get_or_create_call(
            self._settings.STREAM_CALL_TYPE,
            meeting.id,
            created_by_id=meeting.user_id,
            custom={"meetingId": meeting.id, "meetingName": meeting.name},
            settings_override=self._settings.call_settings_override(),
        )

    async def add_agent_participant(self, agent: Agent) -> None:
        await self._video.upsert_users([self.agent_participant(agent)])

    async def delete_call(self, meeting_id: str) -> None:
        await self._video.delete_call(self._settings.STREAM_CALL_TYPE, meeting_id)

    async def _compensate(self, meeting: Meeting, call_created: bool) -> None:
        """Undo a partially provisioned meeting.

        The row is flagged failed first, so a compensation that cannot finish
        leaves it for MeetingReconciler to roll back, never to complete.
        """
        try:
            await self._repository.mark_failed(meeting.id)
        except SQLAlchemyError as exc:
            logger.error("meeting.flag_failed_error", meeting_id=meeting.id, error=str(exc))

        try:
            if call_created:
                await self.delete_call(meeting.id)
            await self._repository.delete_by_id(meeting.id)
        except (ProviderError, SQLAlchemyError) as exc:
            record_provisioning("compensation_failed")
            logger.error(
                "meeting.compensation_failed",
                meeting_id=meeting.id,
                error=str(exc),
            )
            return
        record_provisioning("compensated")
        logger.info("meeting.compensated", meeting_id=meeting.id, call_deleted=call_created)

    # ── Operations ──────────────────────────────────────────────────────────

    async def create(self, data: MeetingCreate, caller: Caller) -> Meeting:
        """Create a meeting and provision its call.

        Raises:
            NotFoundError: The agent is not visible to the caller, or the
                meeting was deleted before provisioning finished.
            ProviderError: A remote step failed (after compensation).
        """
        meeting, agent = await self._repository.create_pending(
            caller.id, data, self._agent_scope(caller.id)
        )
        logger.info("meeting.created", meeting_id=meeting.id, user_id=caller.id, agent_id=agent.id)

        step = "upsert_caller"
        call_created = False
        try:
            await self._video.upsert_users([self.caller_participant(caller)])
            step = "create_call"
            await self.create_call(meeting)
            call_created = True
            step = "upsert_agent"
            await self.add_agent_participant(agent)
        except ProviderError as exc:
            logger.error(
                "meeting.provisioning_failed",
                meeting_id=meeting.id,
                step=step,
                retryable=exc.retryable,
                error=exc.message,
            )
            await self._compensate(meeting, call_created)
            raise

        ready = await self._repository.mark_ready(meeting.id)
        if ready is None:
            # Deleted (or flagged failed) while the remote steps ran
            logger.warning("meeting.vanished_during_provisioning", meeting_id=meeting.id)
            await self._compensate(meeting, call_created=True)
            raise NotFoundError("Meeting", {"id": meeting.id})

        record_provisioning("ready")
        logger.info("meeting.provisioned", meeting_id=meeting.id)
        return ready

    async def get_one(self, meeting_id: str, caller: Caller) -> MeetingWithAgent:
        meeting = await self._repository.get_with_agent(meeting_id, caller.id)
        if meeting is None:
            raise NotFoundError("Meeting", {"id": meeting_id})
        return meeting

    async def get_many(self, query: MeetingListQuery, caller: Caller) -> MeetingPage:
        """One page of the caller's meetings.

        Raises:
            ValidationError: page or page_size out of bounds (checked before
                any storage access).
        """
        validate_page_request(
            query.page,
            query.page_size,
            min_page_size=self._settings.MIN_PAGE_SIZE,
            max_page_size=self._settings.MAX_PAGE_SIZE,
        )
        window = page_window(query.page, query.page_size)
        items, total = await self._repository.list_page(caller.id, query, window)
        return MeetingPage(
            items=items,
            total=total,
            total_pages=total_pages(total, query.page_size),
        )

    async def update(self, data: MeetingUpdate, caller: Caller) -> Meeting:
        """Apply an update as a single conditional write.

        Raises:
            NotFoundError: No owned meeting with this id, or the target agent
                is not visible to the caller.
            InvalidTransitionError: The requested status is not reachable from
                the current one.
            ValidationError: A single supplied time bound would end the
                meeting before it started.
        """
        scope = self._agent_scope(caller.id)
        meeting = await self._repository.update_meeting(caller.id, data, scope)
        if meeting is not None:
            logger.info(
                "meeting.updated",
                meeting_id=meeting.id,
                user_id=caller.id,
                status=meeting.status.value,
            )
            return meeting

        # The write matched nothing: work out which predicate failed.
        stored = await self._repository.get_owned(data.id, caller.id)
        if stored is None:
            raise NotFoundError("Meeting", {"id": data.id})
        if await self._agent_repository.get_agent(data.agent_id, scope) is None:
            raise NotFoundError("Agent", {"id": data.agent_id})

        current = stored.status
        requested = data.status or current
        legal = can_transition(current, requested)
        changes = data.changed_fields()
        started_at = changes.get("started_at", stored.started_at)
        ended_at = changes.get("ended_at", stored.ended_at)
        if legal and ends_before_start(started_at, ended_at):
            raise ValidationError(
                "ended_at must not be earlier than started_at",
                {"started_at": started_at.isoformat(), "ended_at": ended_at.isoformat()},
            )
        # Only the status predicate is left. If can_transition() holds now, the
        # row moved between the write and this read; report the write's view.
        logger.info(
            "meeting.transition_rejected",
            meeting_id=data.id,
            current=current.value,
            requested=requested.value,
            raced=legal,
        )
        raise InvalidTransitionError(current.value, requested.value)

    async def remove(self, meeting_id: str, caller: Caller) -> Meeting:
        meeting = await self._repository.delete_meeting(meeting_id, caller.id)
        if meeting is None:
            raise NotFoundError("Meeting", {"id": meeting_id})
        logger.info("meeting.removed", meeting_id=meeting_id, user_id=caller.id)
        return meeting

    async def generate_token(self, caller: Caller) -> str:
        """Upsert the caller on the provider and sign a user token for them."""
        await self._video.upsert_users([self.caller_participant(caller)])
        token = self._video.create_user_token(caller.id)
        logger.info("meeting.token_issued", user_id=caller.id)
        return token
