"""
Exception handlers for the FastAPI application.

Domain errors become ``{"detail": ...}`` responses with their own status;
anything else is logged with an error ID and returned as a generic 500.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from locall.exceptions import LocallError

logger = logging.getLogger(__name__)


async def locall_error_handler(request: Request, exc: LocallError) -> JSONResponse:
    """Map a service-layer error to its HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} in {request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors"""
    error_id = id(exc)
    logger.error(
        f"Unhandled exception [{error_id}] in {request.method} {request.url.path}: {exc}",
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Please try again later.",
            "error_id": error_id,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers with the FastAPI application."""
    app.add_exception_handler(LocallError, locall_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    logger.debug("Exception handlers registered successfully")
