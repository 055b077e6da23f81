"""Generated avatar URLs for call participants (DiceBear HTTP API)."""

from __future__ import annotations

from enum import Enum
from urllib.parse import urlencode

from src.agentmeet.config import get_settings


class AvatarVariant(str, Enum):
    INITIALS = "initials"  # users without a profile image
    BOTTTS_NEUTRAL = "bottts-neutral"  # agents


def generate_avatar_uri(
    seed: str, variant: AvatarVariant | str, base_url: str | None = None
) -> str:
    """Build a deterministic SVG avatar URL for `seed`.

    Args:
        seed: Display name used to derive the avatar.
        variant: Avatar style.
        base_url: Override for AVATAR_BASE_URL.
    """
    style = AvatarVariant(variant).value
    base = (base_url or get_settings().AVATAR_BASE_URL).rstrip("/")
    return f"{base}/{style}/svg?{urlencode({'seed': seed})}"
