"""
Error Handling for the Seller Watch Search API

Centralized exception handlers for the FastAPI application: status code
mapping, logging, and standardized JSON error bodies.

Server-side failures (5xx) never leak upstream detail to the caller; the
body carries a generic retry-later message and the specifics go to the log.

Usage:
    from services.error_handler import setup_error_handlers

    app = FastAPI()
    setup_error_handlers(app)
"""

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from services.exceptions import (
    WatchSearchException,
    ExternalServiceError,
    ValidationError,
    RateLimitError,
    ConfigurationError,
)

logger = logging.getLogger(__name__)

RETRY_LATER_MESSAGE = "The search service is temporarily unavailable. Please retry later."


# ============================================================
# Error Response Helpers
# ============================================================

def get_status_code(exc: WatchSearchException) -> int:
    """Determine HTTP status code for exception."""
    if isinstance(exc, ValidationError):
        return 400
    elif isinstance(exc, RateLimitError):
        return 429
    elif isinstance(exc, ConfigurationError):
        return 503
    elif isinstance(exc, ExternalServiceError):
        return 502
    return 500


def create_error_response(
    error: WatchSearchException,
    status_code: int = 500,
    request: Optional[Request] = None,
    debug: bool = False,
) -> JSONResponse:
    """Create a standardized JSON error response."""
    if status_code >= 500:
        response_data: Dict[str, Any] = {"error": error.code, "message": RETRY_LATER_MESSAGE}
        if debug:
            response_data["debug"] = error.to_dict()
    else:
        response_data = error.to_dict()

    if request:
        response_data["path"] = str(request.url.path)

    return JSONResponse(status_code=status_code, content=response_data)


def _log_error(exc: WatchSearchException, status_code: int):
    """Log error with appropriate severity."""
    cause = str(exc.cause) if exc.cause else None
    if status_code >= 500:
        logger.error(f"[{exc.code}] {exc.message}", extra={"details": exc.details, "cause": cause})
    else:
        logger.warning(f"[{exc.code}] {exc.message}", extra={"details": exc.details})


# ============================================================
# Setup Function
# ============================================================

def setup_error_handlers(app: FastAPI, debug: bool = False):
    """
    Configure error handlers for the FastAPI application.

    Args:
        app: The FastAPI application instance
        debug: If True, include detailed error info in 5xx responses
    """

    @app.exception_handler(WatchSearchException)
    async def watch_search_exception_handler(request: Request, exc: WatchSearchException):
        status_code = get_status_code(exc)
        _log_error(exc, status_code)
        return create_error_response(exc, status_code, request, debug=debug)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled exception in {request.url.path}: {type(exc).__name__}: {exc}",
            exc_info=True,
        )
        content: Dict[str, Any] = {
            "error": "INTERNAL_ERROR",
            "message": RETRY_LATER_MESSAGE,
            "path": str(request.url.path),
        }
        if debug:
            content["debug"] = {
                "exception": type(exc).__name__,
                "message": str(exc),
                "traceback": traceback.format_exc(),
            }
        return JSONResponse(status_code=500, content=content)

    logger.info(f"[ERROR HANDLER] Configured (debug={debug})")
