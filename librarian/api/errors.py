"""Application-wide exception handlers."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from librarian.core.rate_limiting import RateLimitExceeded

logger = logging.getLogger(__name__)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with a Retry-After hint."""
    logger.info(f"Rate limit hit on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limited",
            "detail": exc.reason,
            "retry_after_seconds": exc.retry_after,
        },
        headers={"Retry-After": str(max(0, exc.retry_after))},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the full traceback, return a generic 500 without internals."""
    logger.error(
        f"Unhandled exception during request: {request.method} {request.url.path}",
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "internal_server_error", "detail": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
