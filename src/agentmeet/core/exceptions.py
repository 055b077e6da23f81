"""Application error taxonomy.

Services raise these; the API layer maps them to HTTP responses in one place
(see register_exception_handlers in src/agentmeet/api/errors.py).

- ValidationError: malformed or missing input, raised before any I/O
- NotFoundError: no row matches id + ownership, or a referenced row is absent
- UnauthenticatedError: no valid caller identity
- InvalidTransitionError: meeting status change not allowed from current status
- ProviderError: the video provider call failed (retryable flag set for timeouts
  and 5xx responses)
"""

from __future__ import annotations

from dataclasses import dataclass, field


class ErrorCode:
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"
    UNAUTHENTICATED = "unauthenticated"
    INVALID_TRANSITION = "invalid_transition"
    PROVIDER_ERROR = "provider_error"
    PROVIDER_TIMEOUT = "provider_timeout"


@dataclass(eq=False)
class AppError(Exception):
    """Base application error with a stable code and a safe message."""

    code: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(AppError):
    def __init__(self, message: str = "Invalid input", details: dict | None = None) -> None:
        super().__init__(ErrorCode.VALIDATION, message, details or {})


class NotFoundError(AppError):
    def __init__(self, resource: str, details: dict | None = None) -> None:
        super().__init__(
            ErrorCode.NOT_FOUND,
            f"{resource} not found",
            {"resource": resource, **(details or {})},
        )
        self.resource = resource


class UnauthenticatedError(AppError):
    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(ErrorCode.UNAUTHENTICATED, message, {})


class InvalidTransitionError(AppError):
    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            ErrorCode.INVALID_TRANSITION,
            f"Cannot change meeting status from {current} to {requested}",
            {"current": current, "requested": requested},
        )


class ProviderError(AppError):
    """The video provider rejected or failed a request."""

    def __init__(
        self,
        operation: str,
        message: str,
        *,
        retryable: bool = False,
        status_code: int | None = None,
        code: str = ErrorCode.PROVIDER_ERROR,
    ) -> None:
        details: dict = {"operation": operation, "retryable": retryable}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(code, message, details)
        self.operation = operation
        self.retryable = retryable
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    """The provider did not answer within the configured timeout."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            operation,
            f"Video provider timed out during {operation}",
            retryable=True,
            code=ErrorCode.PROVIDER_TIMEOUT,
        )
