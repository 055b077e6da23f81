"""Shared filtering, search and page-window helpers.

Pure functions consumed by the agent and meeting repositories. Nothing here
touches a session: predicates are plain SQLAlchemy expressions, and the page
math is integer arithmetic, so every rule can be unit tested in isolation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import ColumnElement, Subquery, func, select

from src.agentmeet.agents.models import AgentModel
from src.agentmeet.core.exceptions import ValidationError
from src.agentmeet.meetings.models import MeetingModel
from src.agentmeet.meetings.schemas import ProvisioningState

LIKE_ESCAPE = "\\"


@dataclass(frozen=True)
class PageWindow:
    """LIMIT/OFFSET pair for one page."""

    limit: int
    offset: int


# ── Page Math ────────────────────────────────────────────────────────────────


def validate_page_request(
    page: int, page_size: int, *, min_page_size: int, max_page_size: int
) -> None:
    """Reject page parameters outside the configured bounds.

    Raises:
        ValidationError: page < 1 or page_size outside [min_page_size, max_page_size].
    """
    if page < 1:
        raise ValidationError("page must be >= 1", {"field": "page", "value": page})
    if page_size < min_page_size or page_size > max_page_size:
        raise ValidationError(
            f"page_size must be between {min_page_size} and {max_page_size}",
            {
                "field": "page_size",
                "value": page_size,
                "min": min_page_size,
                "max": max_page_size,
            },
        )


def page_window(page: int, page_size: int) -> PageWindow:
    """Compute LIMIT/OFFSET for a 1-based page number."""
    return PageWindow(limit=page_size, offset=(page - 1) * page_size)


def total_pages(total: int, page_size: int) -> int:
    """Number of pages needed to show `total` rows; 0 when there are none."""
    if page_size <= 0:
        raise ValueError("page_size must be positive")
    return math.ceil(total / page_size)


# ── Predicates ───────────────────────────────────────────────────────────────


def like_pattern(search: str | None) -> str | None:
    """Build a substring pattern for ILIKE with wildcard characters escaped.

    Returns None for empty or whitespace-only searches so callers can skip
    the predicate entirely.
    """
    if search is None:
        return None
    term = search.strip()
    if not term:
        return None
    escaped = (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", f"{LIKE_ESCAPE}%")
        .replace("_", f"{LIKE_ESCAPE}_")
    )
    return f"%{escaped}%"


def meeting_visible() -> ColumnElement[bool]:
    """Excludes rows whose create already failed and that only await rollback."""
    return MeetingModel.provisioning_state != ProvisioningState.FAILED.value


def owned_meeting(meeting_id: str, owner_id: str) -> list[ColumnElement[bool]]:
    """Predicates for reading or writing one meeting on behalf of its owner."""
    return [MeetingModel.id == meeting_id, MeetingModel.user_id == owner_id, meeting_visible()]


def meeting_filters(
    owner_id: str,
    *,
    search: str | None = None,
    agent_id: str | None = None,
    status: str | Enum | None = None,
) -> list[ColumnElement[bool]]:
    """Predicates for a meeting listing. The owner predicate is always first."""
    clauses: list[ColumnElement[bool]] = [MeetingModel.user_id == owner_id, meeting_visible()]
    pattern = like_pattern(search)
    if pattern is not None:
        clauses.append(MeetingModel.name.ilike(pattern, escape=LIKE_ESCAPE))
    if agent_id:
        clauses.append(MeetingModel.agent_id == agent_id)
    if status:
        clauses.append(MeetingModel.status == (status.value if isinstance(status, Enum) else status))
    return clauses


def meeting_ordering() -> tuple:
    """Newest first; id breaks created_at ties so pages stay stable."""
    return (MeetingModel.created_at.desc(), MeetingModel.id.desc())


def agent_filters(
    owner_id: str | None, *, search: str | None = None
) -> list[ColumnElement[bool]]:
    """Predicates for agent reads. owner_id=None means unscoped (global) reads."""
    clauses: list[ColumnElement[bool]] = []
    if owner_id is not None:
        clauses.append(AgentModel.user_id == owner_id)
    pattern = like_pattern(search)
    if pattern is not None:
        clauses.append(AgentModel.name.ilike(pattern, escape=LIKE_ESCAPE))
    return clauses


def agent_ordering() -> tuple:
    """Newest first, id as tie-breaker."""
    return (AgentModel.created_at.desc(), AgentModel.id.desc())


def agent_meeting_counts() -> Subquery:
    """Visible meetings per agent, as (agent_id, meeting_count)."""
    return (
        select(MeetingModel.agent_id, func.count(MeetingModel.id).label("meeting_count"))
        .where(meeting_visible())
        .group_by(MeetingModel.agent_id)
        .subquery("agent_meeting_counts")
    )
