"""API middleware package."""

from src.agentmeet.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
