"""Global exception handlers for FastAPI.

Every error leaves the API as ``{"error": {"code", "message", "details?"}}``.
Unexpected exceptions are logged with their traceback and reported as a
generic 500.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from socialsync.exceptions import SocialSyncError

logger = logging.getLogger(__name__)

# Error codes for HTTPExceptions raised by FastAPI or dependencies
HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "AUTHENTICATION_FAILED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "RATE_LIMIT_EXCEEDED",
}


def create_error_response(
    code: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Build the error envelope."""
    error = {"code": code, "message": message}
    if details:
        error["details"] = details
    return {"error": error}


async def socialsync_exception_handler(
    request: Request, exc: SocialSyncError
) -> JSONResponse:
    """Handle SocialSyncError and subclasses."""
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        "API error: %s (code=%s, status=%d, path=%s)",
        exc.message,
        exc.error_code,
        exc.status_code,
        request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report request validation failures as 400 with per-field errors."""
    errors = [
        {
            "field": ".".join(str(x) for x in error.get("loc", [])),
            "message": error.get("msg", "Invalid value"),
            "type": error.get("type", "value_error"),
        }
        for error in exc.errors()
    ]
    logger.info("Validation error: %d field errors (path=%s)", len(errors), request.url.path)
    return JSONResponse(
        status_code=400,
        content=create_error_response(
            code="VALIDATION_ERROR",
            message="Request validation failed",
            details={"errors": errors},
        ),
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Wrap HTTPExceptions in the envelope, keeping their headers."""
    message = str(exc.detail) if exc.detail else "An error occurred"
    logger.info("HTTP error %d: %s (path=%s)", exc.status_code, message, request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            code=HTTP_ERROR_CODES.get(exc.status_code, "ERROR"),
            message=message,
        ),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback and return a generic 500."""
    logger.exception("Unhandled exception (path=%s)", request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=create_error_response(
            code="INTERNAL_ERROR",
            message="An unexpected error occurred",
        ),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register all error handlers with the FastAPI app."""
    app.add_exception_handler(SocialSyncError, socialsync_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
