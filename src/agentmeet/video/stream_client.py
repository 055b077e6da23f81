"""Async HTTP client wrapper for the Stream Video server-side REST API.

Provides StreamVideoClient with retry logic (tenacity, configurable attempts,
exponential backoff) for the idempotent operations the meeting saga needs:
user upsert, call get-or-create and call deletion. User tokens for the
browser SDK are signed locally with the API secret (python-jose, HS256).

Failures are classified before they leave this module:
- httpx timeouts -> ProviderTimeoutError (retryable)
- connection errors and HTTP 5xx/429 -> ProviderError(retryable=True)
- other HTTP 4xx -> ProviderError(retryable=False)
"""

from __future__ import annotations

import time
from dataclasses import dataclass

import httpx
import structlog
from jose import jwt
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from src.agentmeet.core.exceptions import ProviderError, ProviderTimeoutError
from src.agentmeet.core.monitoring import track_provider_call

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProviderUser:
    """A participant record as upserted on the provider."""

    id: str
    name: str
    role: str
    image: str | None = None

    def to_payload(self) -> dict:
        payload = {"id": self.id, "name": self.name, "role": self.role}
        if self.image:
            payload["image"] = self.image
        return payload


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


class StreamVideoClient:
    """Async client for the Stream Video REST API.

    Args:
        api_key: Stream application key (sent as the api_key query param).
        api_secret: Stream application secret used to sign server and user tokens.
        base_url: API origin.
        timeout: Per-request timeout in seconds.
        max_attempts: Total attempts for retryable failures.
        token_validity_seconds: Lifetime of user tokens.
        clock_skew_seconds: How far iat is backdated on user tokens.
        retry_wait_min / retry_wait_max: Backoff bounds in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str = "https://video.stream-io-api.com",
        timeout: float = 10.0,
        max_attempts: int = 3,
        token_validity_seconds: int = 3600,
        clock_skew_seconds: int = 60,
        retry_wait_min: float = 1.0,
        retry_wait_max: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_secret = api_secret
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._token_validity_seconds = token_validity_seconds
        self._clock_skew_seconds = clock_skew_seconds
        self._retry_wait_min = retry_wait_min
        self._retry_wait_max = retry_wait_max
        self._transport = transport

    # ── Auth ────────────────────────────────────────────────────────────────

    def _require_credentials(self, operation: str) -> None:
        if not self._api_key or not self._api_secret:
            raise ProviderError(operation, "Stream Video credentials are not configured")

    def _server_token(self) -> str:
        return jwt.encode({"server": True}, self._api_secret, algorithm="HS256")

    def create_user_token(self, user_id: str, now: float | None = None) -> str:
        """Sign a user token for the browser SDK.

        Claims: user_id, iat backdated by the clock skew allowance, exp after
        the validity window. Both timestamps are seconds since the epoch.
        """
        self._require_credentials("create_user_token")
        issued = int(now if now is not None else time.time())
        claims = {
            "user_id": user_id,
            "iat": issued - self._clock_skew_seconds,
            "exp": issued + self._token_validity_seconds,
        }
        return jwt.encode(claims, self._api_secret, algorithm="HS256")

    # ── Transport ───────────────────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client with auth headers and the api_key param."""
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": self._server_token(),
                "stream-auth-type": "jwt",
                "Content-Type": "application/json",
            },
            params={"api_key": self._api_key},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _post_once(
        self, operation: str, path: str, body: dict, allow_not_found: bool
    ) -> dict:
        async with track_provider_call(operation):
            try:
                async with self._client() as client:
                    response = await client.post(path, json=body)
            except httpx.TimeoutException as exc:
                logger.warning("stream.timeout", operation=operation, path=path)
                raise ProviderTimeoutError(operation) from exc
            except httpx.TransportError as exc:
                logger.warning("stream.transport_error", operation=operation, error=str(exc))
                raise ProviderError(
                    operation, f"Video provider unreachable during {operation}", retryable=True
                ) from exc
            if allow_not_found and response.status_code == 404:
                return {}
            self._raise_for_status(operation, response)
            return response.json() if response.content else {}

    @staticmethod
    def _raise_for_status(operation: str, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        retryable = response.status_code >= 500 or response.status_code == 429
        logger.warning(
            "stream.request_failed",
            operation=operation,
            status_code=response.status_code,
            retryable=retryable,
        )
        raise ProviderError(
            operation,
            f"Video provider rejected {operation} with HTTP {response.status_code}",
            retryable=retryable,
            status_code=response.status_code,
        )

    async def _post(
        self, operation: str, path: str, body: dict, *, allow_not_found: bool = False
    ) -> dict:
        """POST with classification and retries of retryable failures."""
        self._require_credentials(operation)
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=1, min=self._retry_wait_min, max=self._retry_wait_max),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        ):
            with attempt:
                return await self._post_once(operation, path, body, allow_not_found)
        return {}  # unreachable: AsyncRetrying either returns or re-raises

    # ── Operations ──────────────────────────────────────────────────────────

    async def upsert_users(self, users: list[ProviderUser]) -> dict:
        """Create or update users. Safe to repeat: the user id is the key.

        POST /api/v2/users
        """
        body = {"users": {u.id: u.to_payload() for u in users}}
        data = await self._post("upsert_users", "/api/v2/users", body)
        logger.info("stream.users_upserted", user_ids=[u.id for u in users])
        return data

    async def get_or_create_call(
        self,
        call_type: str,
        call_id: str,
        *,
        created_by_id: str,
        custom: dict,
        settings_override: dict | None = None,
    ) -> dict:
        """Get or create a call keyed by (call_type, call_id).

        POST /api/v2/video/call/{type}/{id}
        """
        data_block: dict = {"created_by_id": created_by_id, "custom": custom}
        if settings_override:
            data_block["settings_override"] = settings_override
        data = await self._post(
            "get_or_create_call",
            f"/api/v2/video/call/{call_type}/{call_id}",
            {"data": data_block},
        )
        logger.info(
            "stream.call_created",
            call_type=call_type,
            call_id=call_id,
            created=data.get("created"),
        )
        return data

    async def delete_call(self, call_type: str, call_id: str, hard: bool = True) -> None:
        """Delete a call. A call that does not exist counts as deleted.

        POST /api/v2/video/call/{type}/{id}/delete
        """
        await self._post(
            "delete_call",
            f"/api/v2/video/call/{call_type}/{call_id}/delete",
            {"hard": hard},
            allow_not_found=True,
        )
        logger.info("stream.call_deleted", call_type=call_type, call_id=call_id)
