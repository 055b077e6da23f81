"""Tests for AgentService: ownership on writes, configurable read scoping."""

from __future__ import annotations

import pytest

from src.agentmeet.agents.schemas import AgentCreate, AgentListQuery, AgentUpdate
from src.agentmeet.agents.service import AgentService
from src.agentmeet.core.exceptions import NotFoundError, ValidationError
from src.agentmeet.meetings.schemas import MeetingCreate, ProvisioningState
from tests.doubles import U1, U2


@pytest.mark.asyncio
class TestAgentService:
    async def test_create_sets_owner_and_fresh_id(self, agent_service):
        first = await agent_service.create(AgentCreate(name="Tutor", instructions="Teach"), U1)
        second = await agent_service.create(AgentCreate(name="Tutor", instructions="Teach"), U1)

        assert first.user_id == U1.id
        assert first.id and second.id
        assert first.id != second.id

    async def test_get_one_returns_owned_agent(self, agent_service):
        agent = await agent_service.create(AgentCreate(name="Coach", instructions="Coach"), U1)
        fetched = await agent_service.get_one(agent.id, U1)
        assert fetched == agent

    async def test_get_one_other_owner_is_not_found(self, agent_service):
        agent = await agent_service.create(AgentCreate(name="Coach", instructions="Coach"), U1)
        with pytest.raises(NotFoundError) as exc_info:
            await agent_service.get_one(agent.id, U2)
        assert exc_info.value.resource == "Agent"

    async def test_get_many_is_owner_scoped_newest_first(self, agent_service):
        a = await agent_service.create(AgentCreate(name="A", instructions="x"), U1)
        b = await agent_service.create(AgentCreate(name="B", instructions="x"), U1)
        await agent_service.create(AgentCreate(name="C", instructions="x"), U2)

        page = await agent_service.get_many(AgentListQuery(), U1)
        assert [x.id for x in page.items] == [b.id, a.id]
        assert page.total == 2
        assert page.total_pages == 1

    async def test_get_many_search_is_case_insensitive(self, agent_service):
        await agent_service.create(AgentCreate(name="Math Tutor", instructions="x"), U1)
        await agent_service.create(AgentCreate(name="Sales Coach", instructions="x"), U1)

        page = await agent_service.get_many(AgentListQuery(search="tUtOr"), U1)
        assert [a.name for a in page.items] == ["Math Tutor"]

    async def test_get_many_pages_partition_the_listing(self, agent_service):
        for i in range(5):
            await agent_service.create(AgentCreate(name=f"Agent {i}", instructions="x"), U1)

        pages = [
            await agent_service.get_many(AgentListQuery(page=n, page_size=2), U1) for n in (1, 2, 3)
        ]
        ids = [a.id for page in pages for a in page.items]

        assert [len(p.items) for p in pages] == [2, 2, 1]
        assert len(set(ids)) == 5
        assert {p.total_pages for p in pages} == {3}

    async def test_get_many_counts_meetings_per_agent(
        self, agent_service, meeting_service, meeting_repo
    ):
        busy = await agent_service.create(AgentCreate(name="Busy", instructions="x"), U1)
        idle = await agent_service.create(AgentCreate(name="Idle", instructions="x"), U1)
        for name in ("s1", "s2"):
            await meeting_service.create(MeetingCreate(name=name, agent_id=busy.id), U1)
        hidden = await meeting_service.create(MeetingCreate(name="s3", agent_id=busy.id), U1)
        meeting_repo.set(hidden.id, provisioning_state=ProvisioningState.FAILED)

        page = await agent_service.get_many(AgentListQuery(), U1)
        counts = {a.id: a.meeting_count for a in page.items}

        assert counts == {busy.id: 2, idle.id: 0}

    @pytest.mark.parametrize("page_size", [0, 101])
    async def test_get_many_rejects_page_size_out_of_bounds(self, agent_service, page_size):
        with pytest.raises(ValidationError) as exc_info:
            await agent_service.get_many(AgentListQuery(page_size=page_size), U1)
        assert exc_info.value.details["field"] == "page_size"

    async def test_unscoped_reads_see_every_agent(self, agent_repo):
        service = AgentService(agent_repo, owner_scoped_reads=False)
        agent = await service.create(AgentCreate(name="Shared", instructions="x"), U1)

        assert (await service.get_one(agent.id, U2)).id == agent.id
        page = await service.get_many(AgentListQuery(), U2)
        assert [a.id for a in page.items] == [agent.id]

    async def test_update_replaces_fields(self, agent_service):
        agent = await agent_service.create(AgentCreate(name="Old", instructions="old"), U1)
        updated = await agent_service.update(
            AgentUpdate(id=agent.id, name="New", instructions="new"), U1
        )
        assert updated.name == "New"
        assert updated.instructions == "new"
        assert updated.user_id == U1.id

    async def test_update_requires_ownership_even_when_reads_unscoped(self, agent_repo):
        service = AgentService(agent_repo, owner_scoped_reads=False)
        agent = await service.create(AgentCreate(name="Mine", instructions="x"), U1)

        with pytest.raises(NotFoundError):
            await service.update(AgentUpdate(id=agent.id, name="Theirs", instructions="y"), U2)
        assert (await service.get_one(agent.id, U1)).name == "Mine"

    async def test_update_missing_agent_is_not_found(self, agent_service):
        with pytest.raises(NotFoundError):
            await agent_service.update(AgentUpdate(id="nope", name="n", instructions="i"), U1)
