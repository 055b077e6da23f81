"""Shared fixtures: settings, callers, in-memory repositories, services and API client.

API tests build a minimal FastAPI app from the routers (no lifespan, no
database), put the services on app.state and override get_current_user.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.agentmeet.agents.service import AgentService
from src.agentmeet.api.deps import get_current_user
from src.agentmeet.api.errors import register_exception_handlers
from src.agentmeet.api.v1.router import router as v1_router
from src.agentmeet.config import Settings
from src.agentmeet.core.security import Caller
from src.agentmeet.meetings.service import MeetingService
from tests.doubles import (
    U1,
    U2,
    FakeVideoProvider,
    InMemoryAgentRepository,
    InMemoryMeetingRepository,
    make_settings,
)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def caller() -> Caller:
    return U1


@pytest.fixture
def other_caller() -> Caller:
    return U2


@pytest.fixture
def agent_repo() -> InMemoryAgentRepository:
    return InMemoryAgentRepository()


@pytest.fixture
def meeting_repo(agent_repo) -> InMemoryMeetingRepository:
    return InMemoryMeetingRepository(agent_repo)


@pytest.fixture
def video() -> FakeVideoProvider:
    return FakeVideoProvider()


@pytest.fixture
def agent_service(agent_repo, settings) -> AgentService:
    return AgentService(
        agent_repo,
        owner_scoped_reads=settings.AGENT_READS_OWNER_SCOPED,
        min_page_size=settings.MIN_PAGE_SIZE,
        max_page_size=settings.MAX_PAGE_SIZE,
    )


@pytest.fixture
def meeting_service(meeting_repo, agent_repo, video, settings) -> MeetingService:
    return MeetingService(
        repository=meeting_repo,
        agent_repository=agent_repo,
        video_client=video,
        settings=settings,
    )


def make_api_app(agent_service: AgentService, meeting_service: MeetingService) -> FastAPI:
    """Minimal app with the v1 routers and error handlers, services on app.state."""
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(v1_router, prefix="/api/v1")
    app.state.agent_service = agent_service
    app.state.meeting_service = meeting_service
    return app


@pytest_asyncio.fixture
async def api_app(agent_service, meeting_service) -> FastAPI:
    """App whose current user is whatever app.state.test_caller holds (U1 by default)."""
    app = make_api_app(agent_service, meeting_service)
    app.state.test_caller = U1
    app.dependency_overrides[get_current_user] = lambda: app.state.test_caller
    return app


@pytest_asyncio.fixture
async def client(api_app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=api_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
