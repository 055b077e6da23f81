"""Unit tests for StreamVideoClient with a mocked HTTP transport.

Covers request construction (paths, auth headers, api_key param, bodies),
retry of retryable failures, error classification and user token claims.
"""

from __future__ import annotations

import json

import httpx
import pytest
from jose import jwt

from src.agentmeet.core.exceptions import ErrorCode, ProviderError, ProviderTimeoutError
from src.agentmeet.video.stream_client import ProviderUser, StreamVideoClient


def _client(handler, **kwargs) -> StreamVideoClient:
    return StreamVideoClient(
        api_key="key-123",
        api_secret="secret-xyz",
        base_url="https://video.test",
        retry_wait_min=0,
        retry_wait_max=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class _Recorder:
    """MockTransport handler that replays a list of responses or exceptions."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.mark.asyncio
class TestRequests:
    async def test_upsert_users_request(self):
        recorder = _Recorder(httpx.Response(201, json={"users": {}}))
        client = _client(recorder)

        await client.upsert_users(
            [ProviderUser(id="u1", name="Ada", role="admin", image="https://img/a.png")]
        )

        [request] = recorder.requests
        assert request.method == "POST"
        assert request.url.path == "/api/v2/users"
        assert request.url.params["api_key"] == "key-123"
        assert request.headers["stream-auth-type"] == "jwt"
        server_claims = jwt.decode(request.headers["Authorization"], "secret-xyz", algorithms=["HS256"])
        assert server_claims == {"server": True}
        assert json.loads(request.content) == {
            "users": {"u1": {"id": "u1", "name": "Ada", "role": "admin", "image": "https://img/a.png"}}
        }

    async def test_get_or_create_call_request(self):
        recorder = _Recorder(httpx.Response(201, json={"created": True, "call": {}}))
        client = _client(recorder)

        await client.get_or_create_call(
            "default",
            "m-1",
            created_by_id="u1",
            custom={"meetingId": "m-1", "meetingName": "Session 1"},
            settings_override={"recording": {"mode": "auto-on", "quality": "1080p"}},
        )

        [request] = recorder.requests
        assert request.url.path == "/api/v2/video/call/default/m-1"
        body = json.loads(request.content)
        assert body["data"]["created_by_id"] == "u1"
        assert body["data"]["custom"] == {"meetingId": "m-1", "meetingName": "Session 1"}
        assert body["data"]["settings_override"]["recording"]["quality"] == "1080p"

    async def test_delete_call_request(self):
        recorder = _Recorder(httpx.Response(200, json={}))
        client = _client(recorder)

        await client.delete_call("default", "m-1")

        [request] = recorder.requests
        assert request.url.path == "/api/v2/video/call/default/m-1/delete"
        assert json.loads(request.content) == {"hard": True}

    async def test_delete_missing_call_is_not_an_error(self):
        recorder = _Recorder(httpx.Response(404, json={"message": "call not found"}))
        await _client(recorder).delete_call("default", "gone")
        assert len(recorder.requests) == 1


@pytest.mark.asyncio
class TestFailures:
    async def test_5xx_is_retried_then_succeeds(self):
        recorder = _Recorder(
            httpx.Response(503),
            httpx.Response(502),
            httpx.Response(201, json={"users": {}}),
        )
        await _client(recorder).upsert_users([ProviderUser(id="u1", name="Ada", role="admin")])
        assert len(recorder.requests) == 3

    async def test_5xx_exhausts_attempts(self):
        recorder = _Recorder(httpx.Response(500))
        with pytest.raises(ProviderError) as exc_info:
            await _client(recorder, max_attempts=2).upsert_users(
                [ProviderUser(id="u1", name="Ada", role="admin")]
            )
        assert len(recorder.requests) == 2
        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 500

    async def test_4xx_is_not_retried(self):
        recorder = _Recorder(httpx.Response(400, json={"message": "bad"}))
        with pytest.raises(ProviderError) as exc_info:
            await _client(recorder).get_or_create_call("default", "m", created_by_id="u", custom={})
        assert len(recorder.requests) == 1
        assert exc_info.value.retryable is False
        assert exc_info.value.code == ErrorCode.PROVIDER_ERROR

    async def test_timeout_becomes_provider_timeout(self):
        recorder = _Recorder(httpx.ReadTimeout("slow"))
        with pytest.raises(ProviderTimeoutError) as exc_info:
            await _client(recorder, max_attempts=3).upsert_users(
                [ProviderUser(id="u1", name="Ada", role="admin")]
            )
        assert len(recorder.requests) == 3
        assert exc_info.value.retryable is True
        assert exc_info.value.code == ErrorCode.PROVIDER_TIMEOUT

    async def test_connection_error_is_retryable(self):
        recorder = _Recorder(httpx.ConnectError("refused"), httpx.Response(200, json={}))
        await _client(recorder).delete_call("default", "m")
        assert len(recorder.requests) == 2

    async def test_missing_credentials(self):
        client = StreamVideoClient(api_key="", api_secret="")
        with pytest.raises(ProviderError):
            await client.upsert_users([ProviderUser(id="u1", name="Ada", role="admin")])


class TestUserToken:
    def test_claims(self):
        client = StreamVideoClient(api_key="k", api_secret="s3cret")
        token = client.create_user_token("user-7", now=1_900_000_000)

        claims = jwt.decode(token, "s3cret", algorithms=["HS256"], options={"verify_exp": False})
        assert claims == {"user_id": "user-7", "iat": 1_900_000_000 - 60, "exp": 1_900_000_000 + 3600}

    def test_custom_validity_and_skew(self):
        client = StreamVideoClient(
            api_key="k", api_secret="s", token_validity_seconds=600, clock_skew_seconds=5
        )
        claims = jwt.get_unverified_claims(client.create_user_token("u", now=1000))
        assert claims["iat"] == 995
        assert claims["exp"] == 1600

    def test_header_is_hs256(self):
        token = StreamVideoClient(api_key="k", api_secret="s").create_user_token("u")
        assert jwt.get_unverified_header(token)["alg"] == "HS256"
