"""Long-lived service context.

Owns the process-wide resources (database engine, vector store client,
embedding cache, rate limiter) and wires the pipeline services on top of
them. Built once at startup and passed to whoever needs it.
"""

import logging
from dataclasses import dataclass

import httpx
import redis.asyncio as redis
from openai import AsyncOpenAI

from librarian.core.config import Settings
from librarian.core.rate_limiting import WindowRateLimiter
from librarian.core.runtime_settings import DatabaseSettingsProvider, SettingsProvider
from librarian.db.database import Database
from librarian.rag.answerer import AnswerGenerator
from librarian.rag.embedder import Embedder
from librarian.rag.enrichment import MetadataEnricher
from librarian.rag.extractors import DocumentExtractor
from librarian.rag.ingestion import IngestionService
from librarian.rag.retriever import Retriever
from librarian.rag.storage import FileStorage
from librarian.rag.sync import SyncOrchestrator
from librarian.rag.vector_store import VectorStore, create_vector_store

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    """Shared services for the API and background jobs."""

    settings: Settings
    database: Database
    settings_provider: SettingsProvider
    storage: FileStorage
    extractor: DocumentExtractor
    embedder: Embedder
    enricher: MetadataEnricher
    vector_store: VectorStore
    rate_limiter: WindowRateLimiter
    redis_client: redis.Redis | None = None

    @property
    def ingestion(self) -> IngestionService:
        return IngestionService(
            session_maker=self.database.session_maker,
            storage=self.storage,
            extractor=self.extractor,
            settings_provider=self.settings_provider,
        )

    @property
    def sync(self) -> SyncOrchestrator:
        return SyncOrchestrator(
            session_maker=self.database.session_maker,
            storage=self.storage,
            extractor=self.extractor,
            enricher=self.enricher,
            embedder=self.embedder,
            vector_store=self.vector_store,
            settings_provider=self.settings_provider,
        )

    @property
    def retriever(self) -> Retriever:
        return Retriever(
            vector_store=self.vector_store,
            embedder=self.embedder,
            settings_provider=self.settings_provider,
        )

    @property
    def answerer(self) -> AnswerGenerator:
        return AnswerGenerator(
            client=self.enricher.client,
            retriever=self.retriever,
            settings_provider=self.settings_provider,
        )

    async def start(self) -> None:
        """Restore rate limiter state and start its background flush."""
        await self.rate_limiter.restore()
        self.rate_limiter.start(self.settings.rate_limit_flush_interval)

    async def close(self) -> None:
        """Release every owned resource."""
        await self.rate_limiter.stop()
        if self.redis_client is not None:
            await self.redis_client.aclose()
        await self.embedder.client.close()
        if self.enricher.client is not self.embedder.client:
            await self.enricher.client.close()
        self.vector_store.client.close()
        await self.database.close_db()


def build_context(settings: Settings) -> ServiceContext:
    """Construct the ServiceContext from process settings."""
    database = Database.from_url(settings.get_database_url, echo=settings.database_echo)

    # Retries are the caller's decision, never the SDK's
    openai_client = AsyncOpenAI(
        api_key=settings.openai_api_key or None,
        base_url=settings.openai_base_url,
        timeout=httpx.Timeout(settings.openai_timeout, connect=settings.openai_connect_timeout),
        max_retries=0,
    )
    embedder = Embedder(
        client=openai_client,
        model=settings.embedding_model,
        dimensions=settings.embedding_dimensions,
        cache_size=settings.embedding_cache_size,
        min_interval=settings.embedding_min_interval,
    )

    redis_client = redis.from_url(settings.redis_url)
    logger.info(
        f"Service context ready: qdrant={settings.qdrant_url}, "
        f"collection={settings.qdrant_collection}, embedding_model={settings.embedding_model}"
    )

    return ServiceContext(
        settings=settings,
        database=database,
        settings_provider=DatabaseSettingsProvider(database.session_maker),
        storage=FileStorage(settings.storage_root),
        extractor=DocumentExtractor(),
        embedder=embedder,
        enricher=MetadataEnricher(openai_client),
        vector_store=create_vector_store(settings),
        rate_limiter=WindowRateLimiter(redis=redis_client),
        redis_client=redis_client,
    )
