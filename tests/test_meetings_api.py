"""API tests for /api/v1/meetings using in-memory repositories and a fake provider."""

from __future__ import annotations

import pytest
from jose import jwt

from src.agentmeet.core.exceptions import ProviderError, ProviderTimeoutError
from tests.doubles import U2


async def _agent(client, name="Tutor") -> dict:
    response = await client.post("/api/v1/agents", json={"name": name, "instructions": "Teach"})
    assert response.status_code == 201
    return response.json()


async def _meeting(client, agent_id: str, name="Session 1") -> dict:
    response = await client.post("/api/v1/meetings", json={"name": name, "agent_id": agent_id})
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
class TestCreate:
    async def test_create_provisions_call(self, client, video):
        agent = await _agent(client)

        response = await client.post(
            "/api/v1/meetings", json={"name": "Session 1", "agent_id": agent["id"]}
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "upcoming"
        assert data["provisioning_state"] == "ready"
        assert data["user_id"] == "user-1"
        assert ("default", data["id"]) in video.calls

    async def test_unknown_agent_is_404(self, client, video):
        response = await client.post("/api/v1/meetings", json={"name": "S", "agent_id": "nope"})

        assert response.status_code == 404
        assert response.json()["details"]["resource"] == "Agent"
        assert video.calls == {}

    async def test_missing_name_is_422(self, client):
        response = await client.post("/api/v1/meetings", json={"agent_id": "a"})
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    async def test_provider_failure_is_502(self, client, video, meeting_repo):
        agent = await _agent(client)
        video.fail["get_or_create_call"] = ProviderError("get_or_create_call", "bad request")

        response = await client.post("/api/v1/meetings", json={"name": "S", "agent_id": agent["id"]})

        assert response.status_code == 502
        assert response.json()["code"] == "provider_error"
        assert meeting_repo.all() == []

    async def test_provider_timeout_is_504(self, client, video):
        agent = await _agent(client)
        video.fail["upsert_users:user"] = ProviderTimeoutError("upsert_users")

        response = await client.post("/api/v1/meetings", json={"name": "S", "agent_id": agent["id"]})

        assert response.status_code == 504
        assert response.json()["code"] == "provider_timeout"

    async def test_failed_create_leaves_nothing_visible(self, client, video):
        agent = await _agent(client)
        video.fail["upsert_users:user"] = ProviderError("upsert_users", "down", retryable=True)
        video.fail["delete_call"] = ProviderError("delete_call", "down", retryable=True)

        response = await client.post("/api/v1/meetings", json={"name": "S", "agent_id": agent["id"]})
        listing = await client.get("/api/v1/meetings")
        agents = await client.get("/api/v1/agents")

        assert response.status_code == 502
        assert listing.json()["total"] == 0
        assert agents.json()["items"][0]["meeting_count"] == 0


@pytest.mark.asyncio
class TestRead:
    async def test_get_one_includes_agent_and_duration(self, client):
        agent = await _agent(client)
        meeting = await _meeting(client, agent["id"])

        response = await client.get(f"/api/v1/meetings/{meeting['id']}")

        assert response.status_code == 200
        data = response.json()
        assert data["agent"]["id"] == agent["id"]
        assert data["duration"] is None

    async def test_other_users_meeting_is_404(self, client, api_app):
        agent = await _agent(client)
        meeting = await _meeting(client, agent["id"])

        api_app.state.test_caller = U2
        response = await client.get(f"/api/v1/meetings/{meeting['id']}")

        assert response.status_code == 404
        assert response.json()["message"] == "Meeting not found"

    async def test_list_uses_default_page_size(self, client):
        agent = await _agent(client)
        for i in range(12):
            await _meeting(client, agent["id"], name=f"Session {i}")

        response = await client.get("/api/v1/meetings")

        data = response.json()
        assert response.status_code == 200
        assert len(data["items"]) == 10
        assert data["total"] == 12
        assert data["total_pages"] == 2
        assert data["items"][0]["name"] == "Session 11"

    async def test_list_filters(self, client):
        tutor = await _agent(client, "Tutor")
        coach = await _agent(client, "Coach")
        await _meeting(client, tutor["id"], name="Algebra")
        await _meeting(client, coach["id"], name="Running")

        by_agent = await client.get("/api/v1/meetings", params={"agent_id": coach["id"]})
        by_search = await client.get("/api/v1/meetings", params={"search": "alg"})
        by_status = await client.get("/api/v1/meetings", params={"status": "completed"})

        assert [m["name"] for m in by_agent.json()["items"]] == ["Running"]
        assert [m["name"] for m in by_search.json()["items"]] == ["Algebra"]
        assert by_status.json() == {"items": [], "total": 0, "total_pages": 0}

    async def test_page_size_out_of_bounds_is_422(self, client):
        response = await client.get("/api/v1/meetings", params={"page_size": 101})

        assert response.status_code == 422
        assert response.json()["details"]["field"] == "page_size"

    async def test_unknown_status_filter_is_422(self, client):
        response = await client.get("/api/v1/meetings", params={"status": "paused"})
        assert response.status_code == 422


@pytest.mark.asyncio
class TestUpdate:
    async def test_start_meeting(self, client):
        agent = await _agent(client)
        meeting = await _meeting(client, agent["id"])

        response = await client.put(
            f"/api/v1/meetings/{meeting['id']}",
            json={
                "name": "Renamed",
                "agent_id": agent["id"],
                "status": "active",
                "started_at": "2026-03-01T10:00:00Z",
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Renamed"
        assert data["status"] == "active"
        assert data["started_at"].startswith("2026-03-01T10:00:00")

    async def test_backwards_transition_is_409(self, client):
        agent = await _agent(client)
        meeting = await _meeting(client, agent["id"])
        path = f"/api/v1/meetings/{meeting['id']}"
        await client.put(path, json={"name": "S", "agent_id": agent["id"], "status": "cancelled"})

        response = await client.put(
            path, json={"name": "S", "agent_id": agent["id"], "status": "upcoming"}
        )

        assert response.status_code == 409
        assert response.json() == {
            "code": "invalid_transition",
            "message": "Cannot change meeting status from cancelled to upcoming",
            "details": {"current": "cancelled", "requested": "upcoming"},
        }

    async def test_ended_before_started_is_422(self, client):
        agent = await _agent(client)
        meeting = await _meeting(client, agent["id"])

        response = await client.put(
            f"/api/v1/meetings/{meeting['id']}",
            json={
                "name": "S",
                "agent_id": agent["id"],
                "started_at": "2026-03-01T10:00:00Z",
                "ended_at": "2026-03-01T09:00:00Z",
            },
        )

        assert response.status_code == 422

    async def test_end_before_stored_start_is_422(self, client):
        agent = await _agent(client)
        meeting = await _meeting(client, agent["id"])
        path = f"/api/v1/meetings/{meeting['id']}"
        await client.put(
            path,
            json={
                "name": "S",
                "agent_id": agent["id"],
                "status": "active",
                "started_at": "2026-03-01T10:00:00Z",
            },
        )

        response = await client.put(
            path, json={"name": "S", "agent_id": agent["id"], "ended_at": "2026-03-01T09:00:00Z"}
        )
        fetched = await client.get(path)

        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"
        assert response.json()["details"]["ended_at"].startswith("2026-03-01T09:00:00")
        assert fetched.json()["ended_at"] is None
        assert fetched.json()["duration"] is None

    async def test_update_of_other_users_meeting_is_404(self, client, api_app):
        agent = await _agent(client)
        meeting = await _meeting(client, agent["id"])

        api_app.state.test_caller = U2
        response = await client.put(
            f"/api/v1/meetings/{meeting['id']}", json={"name": "Mine", "agent_id": agent["id"]}
        )

        assert response.status_code == 404
        assert response.json()["details"]["resource"] == "Meeting"


@pytest.mark.asyncio
class TestDelete:
    async def test_delete_returns_last_state(self, client):
        agent = await _agent(client)
        meeting = await _meeting(client, agent["id"])

        response = await client.delete(f"/api/v1/meetings/{meeting['id']}")
        again = await client.delete(f"/api/v1/meetings/{meeting['id']}")

        assert response.status_code == 200
        assert response.json()["id"] == meeting["id"]
        assert again.status_code == 404


@pytest.mark.asyncio
class TestToken:
    async def test_token_upserts_caller(self, client, video):
        response = await client.post("/api/v1/meetings/token")

        assert response.status_code == 200
        claims = jwt.decode(
            response.json()["token"], "test-secret", algorithms=["HS256"], options={"verify_exp": False}
        )
        assert claims["user_id"] == "user-1"
        assert video.users["user-1"].role == "admin"

    async def test_token_provider_failure_is_502(self, client, video):
        video.fail["upsert_users"] = ProviderError("upsert_users", "down", retryable=True, status_code=503)

        response = await client.post("/api/v1/meetings/token")

        assert response.status_code == 502
        assert response.json()["details"]["status_code"] == 503


@pytest.mark.asyncio
async def test_meeting_service_not_initialized_is_503(client, api_app):
    api_app.state.meeting_service = None
    response = await client.get("/api/v1/meetings")
    assert response.status_code == 503
