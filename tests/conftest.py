"""Shared pytest fixtures for the librarian test suite."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from qdrant_client import QdrantClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from librarian.core.runtime_settings import StaticSettingsProvider
from librarian.db.database import Database
from librarian.rag.embedder import Embedder
from librarian.rag.enrichment import MetadataEnricher
from librarian.rag.extractors import DocumentExtractor
from librarian.rag.storage import FileStorage
from librarian.rag.vector_store import VectorStore
from tests.fakes import EMBEDDING_DIM, make_chat_client, make_embeddings_client

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_text() -> str:
    """A few paragraphs of plain prose."""
    paragraphs = [
        "The morning begins before the alarm. A glass of water, a short walk, "
        "and ten quiet minutes set the tone for everything that follows.",
        "Habits compound. One page read each day becomes a dozen books a year; "
        "one skipped workout rarely stays a single exception.",
        "Evening routines matter as much as morning ones. Screens off an hour "
        "before sleep, a written plan for tomorrow, and the day is closed.",
    ]
    return "\n\n".join(paragraphs)


@pytest.fixture
async def database(tmp_path: Path):
    """File-backed SQLite database with the schema created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    db = Database(engine)
    await db.init_db()
    yield db
    await db.close_db()


@pytest.fixture
def storage(tmp_path: Path) -> FileStorage:
    return FileStorage(tmp_path / "uploads")


@pytest.fixture
def extractor() -> DocumentExtractor:
    return DocumentExtractor()


@pytest.fixture
def embeddings_client() -> MagicMock:
    return make_embeddings_client()


@pytest.fixture
def sleep() -> AsyncMock:
    """Recorded stand-in for asyncio.sleep."""
    return AsyncMock()


@pytest.fixture
def embedder(embeddings_client: MagicMock, sleep: AsyncMock) -> Embedder:
    return Embedder(client=embeddings_client, model="test-embedding", sleep=sleep)


@pytest.fixture
def chat_client() -> MagicMock:
    return make_chat_client()


@pytest.fixture
def enricher(chat_client: MagicMock) -> MetadataEnricher:
    return MetadataEnricher(chat_client)


@pytest.fixture
def vector_store():
    """In-memory Qdrant collection store."""
    client = QdrantClient(":memory:")
    yield VectorStore(client, collection_name="test_documents", embedding_dim=EMBEDDING_DIM)
    client.close()


@pytest.fixture
def settings_provider() -> StaticSettingsProvider:
    """Runtime settings tuned for small test documents."""
    return StaticSettingsProvider(
        {
            "chunk_size": 50,
            "chunk_overlap": 10,
            "score_threshold": 0.0,
            "embedding_batch_delay": 0.0,
        }
    )
