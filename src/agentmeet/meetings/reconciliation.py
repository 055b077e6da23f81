"""MeetingReconciler -- finishes or rolls back meetings stuck in provisioning.

Two kinds of rows are left behind by create():

- provisioning_state=failed: create() already reported the failure but its
  compensation did not finish. These are only ever rolled back (remote call
  deleted, row deleted), never completed.
- provisioning_state=pending: create() was interrupted before answering
  (process crash). Once older than the stale threshold the idempotent remote
  steps are re-run: call get-or-create, then agent participant upsert. The
  caller participant is not re-upserted here; the profile lives only in the
  caller's token, and generate_token() upserts it before the caller can join.

Outcomes per meeting:
- rolled_back: a failed row was removed
- ready: remote steps succeeded, row marked ready
- retry: a step failed, attempts incremented, picked up again next pass
- abandoned: agent gone or max attempts reached; remote call deleted (best
  effort) and row deleted
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from src.agentmeet.core.exceptions import ProviderError
from src.agentmeet.core.monitoring import record_reconciliation

if TYPE_CHECKING:
    from src.agentmeet.agents.repository import AgentRepository
    from src.agentmeet.meetings.repository import MeetingRepository
    from src.agentmeet.meetings.schemas import Meeting
    from src.agentmeet.meetings.service import MeetingService

logger = structlog.get_logger(__name__)


@dataclass
class ReconciliationReport:
    """Meeting ids per outcome for one pass."""

    rolled_back: list[str] = field(default_factory=list)
    ready: list[str] = field(default_factory=list)
    retry: list[str] = field(default_factory=list)
    abandoned: list[str] = field(default_factory=list)

    @property
    def examined(self) -> int:
        return len(self.rolled_back) + len(self.ready) + len(self.retry) + len(self.abandoned)


class MeetingReconciler:
    """Background job over pending meetings.

    Args:
        repository: MeetingRepository.
        agent_repository: AgentRepository (unscoped lookups by id).
        service: MeetingService, for the shared provisioning steps.
        stale_seconds: Minimum age of a pending row before it is touched.
        batch_limit: Rows examined per pass.
        max_attempts: Failed passes after which a row is abandoned.
        interval_seconds: Sleep between passes in run_loop().
    """

    def __init__(
        self,
        repository: MeetingRepository,
        agent_repository: AgentRepository,
        service: MeetingService,
        *,
        stale_seconds: int = 120,
        batch_limit: int = 50,
        max_attempts: int = 5,
        interval_seconds: int = 60,
    ) -> None:
        self._repository = repository
        self._agent_repository = agent_repository
        self._service = service
        self._stale_seconds = stale_seconds
        self._batch_limit = batch_limit
        self._max_attempts = max_attempts
        self._interval_seconds = interval_seconds
        self._running = False

    async def _remove(self, meeting: Meeting) -> None:
        try:
            await self._service.delete_call(meeting.id)
        except ProviderError as exc:
            # The row is the source of truth; an orphaned remote call is inert.
            logger.warning(
                "reconcile.call_delete_failed", meeting_id=meeting.id, error=exc.message
            )
        await self._repository.delete_by_id(meeting.id)

    async def _abandon(self, meeting: Meeting, reason: str) -> None:
        await self._remove(meeting)
        logger.warning("reconcile.abandoned", meeting_id=meeting.id, reason=reason)

    async def roll_back(self, meeting: Meeting) -> str:
        """Finish the compensation of a meeting whose create already failed."""
        await self._remove(meeting)
        logger.info("reconcile.rolled_back", meeting_id=meeting.id)
        return "rolled_back"

    async def reconcile_meeting(self, meeting: Meeting) -> str:
        """Drive one pending meeting forward. Returns the outcome label."""
        agent = await self._agent_repository.get_agent(meeting.agent_id, None)
        if agent is None:
            await self._abandon(meeting, "agent_missing")
            return "abandoned"

        try:
            await self._service.create_call(meeting)
            await self._service.add_agent_participant(agent)
        except ProviderError as exc:
            attempts = await self._repository.increment_attempts(meeting.id)
            logger.warning(
                "reconcile.attempt_failed",
                meeting_id=meeting.id,
                attempts=attempts,
                error=exc.message,
            )
            if attempts >= self._max_attempts:
                await self._abandon(meeting, "max_attempts")
                return "abandoned"
            return "retry"

        if await self._repository.mark_ready(meeting.id) is None:
            # Flagged failed or deleted meanwhile; the next pass settles it
            logger.info("reconcile.superseded", meeting_id=meeting.id)
            return "retry"
        logger.info("reconcile.ready", meeting_id=meeting.id)
        return "ready"

    async def run_once(self) -> ReconciliationReport:
        """Roll back failed meetings, then examine one batch of stale pending ones."""
        report = ReconciliationReport()

        for meeting in await self._repository.list_failed(self._batch_limit):
            outcome = await self.roll_back(meeting)
            report.rolled_back.append(meeting.id)
            record_reconciliation(outcome)

        pending = await self._repository.list_stale_pending(
            self._stale_seconds, self._batch_limit
        )
        for meeting in pending:
            outcome = await self.reconcile_meeting(meeting)
            getattr(report, outcome).append(meeting.id)
            record_reconciliation(outcome)

        if report.examined:
            logger.info(
                "reconcile.pass_complete",
                rolled_back=len(report.rolled_back),
                ready=len(report.ready),
                retry=len(report.retry),
                abandoned=len(report.abandoned),
            )
        return report

    async def run_loop(self) -> None:
        """Call run_once every interval until stop(). Errors are logged, not fatal."""
        self._running = True
        logger.info("reconcile.started", interval_seconds=self._interval_seconds)

        while self._running:
            try:
                await self.run_once()
            except Exception:
                logger.exception("reconcile.pass_error")

            await asyncio.sleep(self._interval_seconds)

    def stop(self) -> None:
        """Signal the loop to stop."""
        self._running = False
