"""JWT verification for caller identity.

Session issuance belongs to the external auth service. This module only
verifies the bearer access tokens it signs and turns their claims into a
Caller. create_access_token() is kept for local development and tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from jose import JWTError, jwt

from src.agentmeet.config import get_settings
from src.agentmeet.core.exceptions import UnauthenticatedError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Caller:
    """Authenticated identity attached to every service call."""

    id: str
    name: str
    email: str
    image: str | None = None


# ── JWT Token Creation ────────────────────────────────────────────────────────


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token.

    The data dict should contain at minimum:
    - sub: user_id (str)
    - name: display name (str)
    - email: email address (str)
    """
    settings = get_settings()
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({
        "exp": expire,
        "iat": now,
        "type": "access",
    })
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# ── JWT Token Verification ────────────────────────────────────────────────────


def verify_token(token: str, token_type: str = "access") -> dict:
    """Decode and validate a JWT token.

    Args:
        token: The JWT string.
        token_type: Expected token type.

    Returns:
        The decoded payload dict.

    Raises:
        UnauthenticatedError: If the token is invalid, expired, or wrong type.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError as exc:
        logger.info("auth.token_rejected", reason=str(exc))
        raise UnauthenticatedError("Could not validate credentials") from exc

    if payload.get("type") != token_type or not payload.get("sub"):
        raise UnauthenticatedError("Could not validate credentials")
    return payload


def caller_from_claims(payload: dict) -> Caller:
    """Build a Caller from verified token claims."""
    name = payload.get("name") or payload.get("email") or str(payload["sub"])
    return Caller(
        id=str(payload["sub"]),
        name=name,
        email=payload.get("email") or "",
        image=payload.get("picture") or payload.get("image"),
    )
