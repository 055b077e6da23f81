"""App wiring tests: liveness, metrics, request ids and avatar URLs."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from src.agentmeet.main import build_services, create_app
from src.agentmeet.video.avatar import AvatarVariant, generate_avatar_uri
from tests.doubles import make_settings


@pytest.fixture
def app():
    # ASGITransport does not run the lifespan, so no database is touched
    return create_app()


@pytest.mark.asyncio
async def test_health(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_request_id_is_echoed_or_generated(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        echoed = await ac.get("/health", headers={"X-Request-ID": "req-42"})
        generated = await ac.get("/health")

    assert echoed.headers["X-Request-ID"] == "req-42"
    assert generated.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_metrics_endpoint(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        await ac.get("/health")
        response = await ac.get("/metrics")

    assert response.status_code == 200
    assert "http_requests_total" in response.text


def test_build_services_wires_everything():
    services = build_services(make_settings(RECONCILIATION_STALE_SECONDS=30))

    assert set(services) == {"agent_service", "meeting_service", "reconciler"}


class TestAvatar:
    def test_user_initials(self):
        uri = generate_avatar_uri("Ada Lovelace", AvatarVariant.INITIALS, "https://avatars.test/9.x/")
        assert uri == "https://avatars.test/9.x/initials/svg?seed=Ada+Lovelace"

    def test_agent_bot(self):
        uri = generate_avatar_uri("Tutor", "bottts-neutral", "https://avatars.test/9.x")
        assert uri == "https://avatars.test/9.x/bottts-neutral/svg?seed=Tutor"

    def test_unknown_variant(self):
        with pytest.raises(ValueError):
            generate_avatar_uri("x", "pixel-art", "https://avatars.test")
