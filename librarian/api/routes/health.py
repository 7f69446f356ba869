"""Health check endpoints for Kubernetes probes."""

import asyncio
from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel
from sqlalchemy import text

from librarian.api.deps import AppSettings, Context
from librarian.core.context import ServiceContext

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str
    checks: dict | None = None


async def check_database(context: ServiceContext) -> tuple[bool, str]:
    """Check database connectivity."""
    try:
        async with context.database.session_maker() as session:
            await session.execute(text("SELECT 1"))
        return True, "healthy"
    except Exception as e:
        return False, f"unhealthy: {e!s}"


async def check_redis(context: ServiceContext) -> tuple[bool, str]:
    """Check Redis connectivity."""
    if context.redis_client is None:
        return True, "disabled"
    try:
        await context.redis_client.ping()
        return True, "healthy"
    except Exception as e:
        return False, f"unhealthy: {e!s}"


async def check_qdrant(context: ServiceContext) -> tuple[bool, str]:
    """Check Qdrant connectivity."""
    try:
        await asyncio.to_thread(context.vector_store.client.get_collections)
        return True, "healthy"
    except Exception as e:
        return False, f"unhealthy: {e!s}"


@router.get("/health/live", response_model=HealthResponse)
async def liveness(settings: AppSettings):
    """Kubernetes liveness probe.

    Returns 200 if the process is alive.
    """
    return HealthResponse(
        status="alive", timestamp=datetime.now(UTC).isoformat(), version=settings.app_version
    )


@router.get("/health/ready", response_model=HealthResponse)
async def readiness(context: Context, settings: AppSettings):
    """Kubernetes readiness probe.

    Database and Qdrant are required. Redis only backs rate limiter
    persistence, so it is reported but does not fail readiness.
    """
    (db_ok, db_status), (_redis_ok, redis_status), (qdrant_ok, qdrant_status) = await asyncio.gather(
        check_database(context), check_redis(context), check_qdrant(context)
    )
    checks = {"database": db_status, "redis": redis_status, "qdrant": qdrant_status}

    if not (db_ok and qdrant_ok):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "checks": checks},
        )

    return HealthResponse(
        status="ready",
        timestamp=datetime.now(UTC).isoformat(),
        version=settings.app_version,
        checks=checks,
    )
