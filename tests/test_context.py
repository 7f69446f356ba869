"""Tests for ServiceContext wiring."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from librarian.core.config import Settings
from librarian.core.context import ServiceContext, build_context


@pytest.fixture
def qdrant_client(monkeypatch):
    client = MagicMock()
    monkeypatch.setattr("librarian.rag.vector_store.QdrantClient", MagicMock(return_value=client))
    return client


def _settings(tmp_path, **overrides) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'context.db'}",
        openai_api_key="sk-test",
        storage_root=tmp_path / "uploads",
        **overrides,
    )


class TestBuildContext:
    async def test_embedding_dimensions_agree(self, tmp_path, qdrant_client):
        context = build_context(_settings(tmp_path, embedding_dimensions=1536))

        assert context.embedder.dimensions == 1536
        assert context.vector_store.embedding_dim == 1536

        await context.close()

    async def test_redis_client_shared_with_rate_limiter(self, tmp_path, qdrant_client):
        context = build_context(_settings(tmp_path))

        assert context.redis_client is not None
        assert context.rate_limiter.redis is context.redis_client

        await context.close()

    async def test_close_releases_redis(self, tmp_path, qdrant_client):
        context = build_context(_settings(tmp_path))
        context.redis_client = MagicMock(aclose=AsyncMock())

        await context.close()

        context.redis_client.aclose.assert_awaited_once()
        qdrant_client.close.assert_called_once()


class TestServiceContext:
    def test_redis_is_optional(self):
        assert ServiceContext.__dataclass_fields__["redis_client"].default is None
