"""Exception handlers for the FastAPI application.

Application errors are turned into a standard error body:

    {"error": {"code": "SERVICE_NOT_FOUND", "message": "...", "details": {...},
               "request_id": "...", "timestamp": "..."}}

Usage:
    from dbservices.api.exception_handlers import register_exception_handlers
    app = FastAPI()
    register_exception_handlers(app)
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dbservices.core.exceptions import DbServicesError
from dbservices.core.logging import get_logger, sanitize_error

logger = get_logger(__name__)


def get_request_id(request: Request) -> str | None:
    """Request ID from request state or the X-Request-ID header."""
    request_id: str | None = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return request.headers.get("X-Request-ID")


def build_error_response(
    error_code: str,
    message: str,
    status_code: int,
    request: Request | None = None,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build a standardized error response.

    Args:
        error_code: Machine-readable error code
        message: Human-readable error message
        status_code: HTTP status code
        request: Optional request for extracting request ID
        details: Optional additional error details

    Returns:
        JSONResponse with standardized error format
    """
    error_body: dict[str, Any] = {
        "code": error_code,
        "message": message,
    }

    if details:
        error_body["details"] = details

    if request:
        request_id = get_request_id(request)
        if request_id:
            error_body["request_id"] = request_id

    error_body["timestamp"] = datetime.now(UTC).isoformat()

    return JSONResponse(status_code=status_code, content={"error": error_body})


async def dbservices_exception_handler(request: Request, exc: DbServicesError) -> JSONResponse:
    """Handle DbServicesError and its subclasses."""
    log_context: dict[str, Any] = {
        "error_code": exc.error_code,
        "status_code": exc.status_code,
        "path": str(request.url.path),
        "method": request.method,
    }
    if exc.details:
        log_context["details"] = exc.details

    if exc.status_code >= 500:
        logger.error(f"Server error: {sanitize_error(exc)}", extra=log_context)
    elif exc.status_code >= 400:
        logger.info(f"Client error: {exc.message}", extra=log_context)

    return build_error_response(
        error_code=exc.error_code,
        message=sanitize_error(exc) if exc.status_code >= 500 else exc.message,
        status_code=exc.status_code,
        request=request,
        details=exc.details or None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception: {sanitize_error(exc)}",
        extra={"path": str(request.url.path), "method": request.method},
        exc_info=True,
    )
    return build_error_response(
        error_code="INTERNAL_ERROR",
        message="An unexpected error occurred",
        status_code=500,
        request=request,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register the exception handlers with the FastAPI application."""
    # type ignores: Starlette's handler typing does not accept subclass handlers
    app.add_exception_handler(
        DbServicesError,
        dbservices_exception_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, generic_exception_handler)
