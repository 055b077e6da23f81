"""Video provider integration (Stream Video) and generated avatars."""

from src.agentmeet.video.stream_client import StreamVideoClient

__all__ = ["StreamVideoClient"]
