"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from librarian.api.errors import register_exception_handlers
from librarian.api.routes import documents, health, query, sync
from librarian.core.config import get_settings
from librarian.core.context import ServiceContext, build_context
from librarian.core.logging import configure_logging

logger = logging.getLogger(__name__)


def create_app(context: ServiceContext | None = None) -> FastAPI:
    """Build the application.

    Args:
        context: Pre-built services; when omitted they are built from
            settings at startup and released at shutdown
    """
    settings = context.settings if context else get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown."""
        configure_logging(settings)
        logger.info(f"Starting {settings.app_name} v{settings.app_version} ({settings.environment})")

        owned = context is None
        service_context = build_context(settings) if owned else context
        app.state.context = service_context

        if owned:
            # In production, use Alembic migrations instead
            if settings.environment == "development":
                await service_context.database.init_db()
                logger.info("Database initialized")
            await service_context.start()

        logger.info("Startup complete - ready to accept requests")
        yield

        logger.info("Shutting down...")
        if owned:
            await service_context.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Document ingestion and hybrid retrieval API",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    if context is not None:
        app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    # Health check routes (public paths)
    app.include_router(health.router, tags=["Health"])

    app.include_router(documents.router, prefix=settings.api_prefix, tags=["Documents"])
    app.include_router(sync.router, prefix=settings.api_prefix, tags=["Sync"])
    app.include_router(query.router, prefix=settings.api_prefix, tags=["Query"])

    # Prometheus metrics endpoint
    app.mount("/metrics", make_asgi_app())

    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs" if settings.debug else None,
            "health": "/health/ready",
        }

    return app


app = create_app()


if __name__ == "__main__":
    _settings = get_settings()
    uvicorn.run(
        "librarian.api.main:app",
        host=_settings.api_host,
        port=_settings.api_port,
        reload=(_settings.environment == "development"),
    )
