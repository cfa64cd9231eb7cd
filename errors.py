"""Error taxonomy for lineage and custody operations and its HTTP mapping.

Every failure the engine can report is a ``TraceChainError`` carrying the
HTTP status and a machine-readable code. Handlers registered by
``register_exception_handlers`` turn them (and request validation errors)
into one JSON envelope:

    {"success": false, "error": {"code": "...", "message": "...", "details": {...}}}
"""

import logging
from typing import Any, Dict, Optional, Union

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

LOGGER = logging.getLogger(__name__)


class TraceChainError(Exception):
    """Base class for errors surfaced to callers."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundError(TraceChainError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"


class DuplicateKeyError(TraceChainError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "DUPLICATE_KEY"


class ConflictError(TraceChainError):
    """A referenced batch changed underneath the running operation."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "CONFLICT"


class InvalidTransitionError(TraceChainError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "INVALID_TRANSITION"

    def __init__(self, batch_id: str, current_status: str, operation: str):
        self.batch_id = batch_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"cannot {operation} batch {batch_id} in status {current_status}",
            details={"batchId": batch_id, "status": current_status, "operation": operation},
        )


class ValidationError(TraceChainError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "VALIDATION_ERROR"


class StoreError(TraceChainError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "STORE_ERROR"


def error_response(
    status_code: int,
    message: str,
    error_code: str,
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "success": False,
        "error": {"code": error_code, "message": message},
    }
    if details:
        content["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=content)


async def trace_chain_exception_handler(request: Request, exc: TraceChainError) -> JSONResponse:
    if isinstance(exc, StoreError):
        LOGGER.error("Store error on %s %s: %s", request.method, request.url.path, exc.message)
    else:
        LOGGER.warning("%s on %s %s: %s", exc.error_code, request.method, request.url.path, exc.message)
    return error_response(exc.status_code, exc.message, exc.error_code, exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code >= 500:
        LOGGER.error("HTTP %s on %s: %s", exc.status_code, request.url.path, exc.detail)
    return error_response(exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    LOGGER.warning("Validation error on %s", request.url.path)
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        ValidationError.error_code,
        {"errors": errors},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred. Please try again later.",
        "INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(TraceChainError, trace_chain_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
