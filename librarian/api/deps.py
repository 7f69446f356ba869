"""FastAPI dependency injection.

Provides common dependencies for API routes.
"""

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from librarian.core.config import Settings, get_settings
from librarian.core.context import ServiceContext
from librarian.core.rate_limiting import RateLimitDecision, enforce
from librarian.db.repository import DocumentRepository


def get_context(request: Request) -> ServiceContext:
    """The ServiceContext built at startup."""
    return request.app.state.context


Context = Annotated[ServiceContext, Depends(get_context)]
AppSettings = Annotated[Settings, Depends(get_settings)]


async def get_db(context: Context) -> AsyncIterator[AsyncSession]:
    """Request-scoped database session."""
    async for session in context.database.session():
        yield session


DB = Annotated[AsyncSession, Depends(get_db)]


async def get_document_repo(db: DB) -> DocumentRepository:
    """Get document repository."""
    return DocumentRepository(db)


DocumentRepo = Annotated[DocumentRepository, Depends(get_document_repo)]


def get_client_key(request: Request) -> str:
    """Identify the caller for rate limiting.

    Uses the first address of X-Forwarded-For, then X-Real-IP, then the
    socket peer.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client:
        return request.client.host
    return "unknown"


class RateLimit:
    """Dependency enforcing the rate limit rule of one route."""

    def __init__(self, route: str):
        self.route = route

    def __call__(self, request: Request, context: Context) -> RateLimitDecision:
        return enforce(context.rate_limiter, self.route, get_client_key(request))


UploadRateLimit = Annotated[RateLimitDecision, Depends(RateLimit("upload"))]
QueryRateLimit = Annotated[RateLimitDecision, Depends(RateLimit("query"))]
