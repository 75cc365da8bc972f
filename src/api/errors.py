"""Map admin core exceptions to HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.core.exceptions import (
    BackendError,
    FlagConflictError,
    FlagNotFoundError,
    HMSBaseError,
    TenantNotFoundError,
)
from src.core.logging import get_logger

log = get_logger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[HMSBaseError], int], ...] = (
    (TenantNotFoundError, status.HTTP_404_NOT_FOUND),
    (FlagNotFoundError, status.HTTP_404_NOT_FOUND),
    (FlagConflictError, status.HTTP_409_CONFLICT),
    (BackendError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


async def _core_error(request: Request, exc: Exception) -> JSONResponse:
    code = next(
        (c for kind, c in _STATUS_BY_ERROR if isinstance(exc, kind)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if code >= 500:
        log.error(
            "request_failed",
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
        )
    return JSONResponse(status_code=code, content={"detail": str(exc)})


async def _value_error(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc)},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HMSBaseError, _core_error)
    app.add_exception_handler(ValueError, _value_error)
