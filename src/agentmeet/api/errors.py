"""Mapping of AppError subclasses to JSON error responses.

Every error body has the shape {"code": ..., "message": ..., "details": {...}}.
"""

from __future__ import annotations

import pydantic
import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.agentmeet.core.exceptions import (
    AppError,
    ErrorCode,
    InvalidTransitionError,
    NotFoundError,
    ProviderError,
    ProviderTimeoutError,
    UnauthenticatedError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

# Starlette renamed the 422 constant (UNPROCESSABLE_ENTITY -> UNPROCESSABLE_CONTENT)
HTTP_422 = 422

# Most specific class first
_STATUS_BY_ERROR: list[tuple[type[AppError], int]] = [
    (ValidationError, HTTP_422),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (UnauthenticatedError, status.HTTP_401_UNAUTHORIZED),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (ProviderTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
]


def status_for(exc: AppError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _error_body(code: str, message: str, details: dict) -> dict:
    return {"code": code, "message": message, "details": details}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    status_code = status_for(exc)
    log = logger.warning if status_code >= 500 else logger.info
    log(
        "api.error",
        path=request.url.path,
        status_code=status_code,
        code=exc.code,
        message=exc.message,
    )
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthenticatedError) else None
    return JSONResponse(
        status_code=status_code,
        content=_error_body(exc.code, exc.message, exc.details),
        headers=headers,
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError | pydantic.ValidationError
) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=HTTP_422,
        content=_error_body(ErrorCode.VALIDATION, "Invalid input", {"errors": errors}),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the AppError and request validation handlers on `app`."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(pydantic.ValidationError, request_validation_handler)
