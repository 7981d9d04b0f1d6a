"""Exception handlers for the sync status API.

Every failure leaves the API as an ``APIResponse`` envelope with
``success=False``. Store and internal errors hide their detail unless DEBUG
is on.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ecosync.config import settings
from ecosync.core.errors import (
    ConflictNotFoundError,
    OfflineDataUnavailableError,
    OperationNotFoundError,
    StorageError,
    SyncError,
)
from ecosync.schemas import APIResponse, ErrorBody

logger = logging.getLogger(__name__)

SYNC_ERROR_STATUS: dict[type[SyncError], int] = {
    OperationNotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictNotFoundError: status.HTTP_404_NOT_FOUND,
    OfflineDataUnavailableError: status.HTTP_404_NOT_FOUND,
}


def _error_response(
    status_code: int,
    code: str,
    message: str,
    details: list[dict] | None = None,
) -> JSONResponse:
    envelope = APIResponse(
        success=False,
        error=ErrorBody(code=code, message=message, details=details or None),
    )
    return JSONResponse(
        status_code=status_code,
        content=envelope.model_dump(mode="json", exclude_none=True),
    )


def _status_for(exc: SyncError) -> int:
    for cls in type(exc).__mro__:
        if cls in SYNC_ERROR_STATUS:
            return SYNC_ERROR_STATUS[cls]
    return status.HTTP_400_BAD_REQUEST


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return _error_response(
        status_code=exc.status_code,
        code=f"HTTP_{exc.status_code}",
        message=str(exc.detail),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """422 with one entry per invalid field, e.g. ``{"field": "online", ...}``."""
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", "Invalid value"),
            "type": err.get("type", "value_error"),
        }
        for err in exc.errors()
    ]
    return _error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code="VALIDATION_ERROR",
        message="Request body did not match the expected schema.",
        details=details,
    )


async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    return _error_response(status_code=_status_for(exc), code=exc.code, message=str(exc))


async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    """The local store failed; report 503 so the UI can retry later."""
    logger.error(
        "Store failure on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    message = str(exc) if settings.DEBUG else "Local storage is unavailable."
    return _error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        code=exc.code,
        message=message,
    )


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return _error_response(
        status_code=status.HTTP_400_BAD_REQUEST,
        code="BAD_REQUEST",
        message=str(exc),
    )


async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    message = f"Internal error: {exc}" if settings.DEBUG else "Sync engine error."
    return _error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="INTERNAL_ERROR",
        message=message,
    )


def register_error_handlers(app: FastAPI) -> None:
    # Starlette picks the most specific registered class, so StorageError
    # wins over SyncError
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StorageError, storage_error_handler)
    app.add_exception_handler(SyncError, sync_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
