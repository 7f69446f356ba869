"""Tests for the Qdrant VectorStore, against an in-memory Qdrant."""

import math
from unittest.mock import MagicMock

import pytest

from librarian.rag.vector_store import (
    CONTENT_VECTOR,
    META_VECTOR,
    VectorPoint,
    VectorStore,
    VectorStoreError,
    point_id,
)
from tests.fakes import EMBEDDING_DIM, fake_vector


def _point(text: str, text_hash: str = "hash-a", index: int = 0, meta: str | None = None) -> VectorPoint:
    return VectorPoint(
        id=point_id(text_hash, index),
        content_vector=fake_vector(text),
        content=text,
        metadata={"text_hash": text_hash, "chunk_index": index},
        meta_vector=fake_vector(meta) if meta is not None else None,
    )


class TestPointId:
    def test_stable(self):
        assert point_id("abc", 3) == point_id("abc", 3)

    def test_distinct_per_chunk_and_text(self):
        ids = {point_id("abc", 0), point_id("abc", 1), point_id("abd", 0)}
        assert len(ids) == 3


class TestCollection:
    async def test_create_is_idempotent(self, vector_store):
        assert await vector_store.create_collection() is True
        assert await vector_store.create_collection() is False
        assert await vector_store.collection_exists()

    async def test_recreate_drops_points(self, vector_store):
        await vector_store.create_collection()
        await vector_store.upsert([_point("first")])

        assert await vector_store.create_collection(recreate=True) is True
        info = await vector_store.get_collection_info()
        assert info["points_count"] == 0

    async def test_missing_dimensions(self):
        store = VectorStore(MagicMock(), collection_name="x")
        with pytest.raises(VectorStoreError):
            await store.create_collection()

    async def test_info_for_missing_collection(self, vector_store):
        assert await vector_store.get_collection_info() is None

    async def test_delete_collection(self, vector_store):
        assert await vector_store.delete_collection() is False
        await vector_store.create_collection()
        assert await vector_store.delete_collection() is True
        assert not await vector_store.collection_exists()


class TestSingleVector:
    async def test_upsert_and_search(self, vector_store):
        await vector_store.create_collection()
        points = [_point("alpha", index=0), _point("beta", index=1), _point("gamma", index=2)]

        assert await vector_store.upsert(points) == 3

        hits = await vector_store.search(fake_vector("beta"), limit=2)
        assert len(hits) == 2
        assert hits[0].content == "beta"
        assert hits[0].score == pytest.approx(1.0, abs=1e-4)
        assert hits[0].metadata["chunk_index"] == 1
        assert hits[0].score >= hits[1].score

    async def test_upsert_same_ids_overwrites(self, vector_store):
        await vector_store.create_collection()
        await vector_store.upsert([_point("v1")])
        await vector_store.upsert([_point("v2")])

        info = await vector_store.get_collection_info()
        assert info["points_count"] == 1

    async def test_score_threshold(self, vector_store):
        await vector_store.create_collection()
        await vector_store.upsert([_point("alpha", index=0), _point("beta", index=1)])

        hits = await vector_store.search(fake_vector("alpha"), limit=5, score_threshold=0.9999)
        assert [h.content for h in hits] == ["alpha"]

    async def test_delete_document_points(self, vector_store):
        await vector_store.create_collection()
        await vector_store.upsert([_point("a", "hash-a", 0), _point("b", "hash-a", 1), _point("c", "hash-c", 0)])

        await vector_store.delete_document_points("hash-a")

        info = await vector_store.get_collection_info()
        assert info["points_count"] == 1

    async def test_empty_upsert(self, vector_store):
        assert await vector_store.upsert([]) == 0


class TestMultiVector:
    async def test_named_spaces_searched_independently(self, vector_store):
        await vector_store.create_collection(multi_vector=True)
        await vector_store.upsert(
            [
                _point("chunk about apples", index=0, meta="fruit"),
                _point("chunk about engines", index=1, meta="machines"),
            ]
        )

        content_hits = await vector_store.search(fake_vector("chunk about engines"), space=CONTENT_VECTOR)
        meta_hits = await vector_store.search(fake_vector("fruit"), space=META_VECTOR)

        assert content_hits[0].content == "chunk about engines"
        assert meta_hits[0].content == "chunk about apples"


class TestValidation:
    async def test_mixed_layouts_rejected(self, vector_store):
        await vector_store.create_collection()
        points = [_point("a", index=0), _point("b", index=1, meta="m")]

        with pytest.raises(VectorStoreError, match="mixes"):
            await vector_store.upsert(points)

    async def test_wrong_dimension_rejects_whole_batch(self, vector_store):
        await vector_store.create_collection()
        bad = _point("b", index=1)
        bad.content_vector = [0.1] * (EMBEDDING_DIM + 1)

        with pytest.raises(VectorStoreError, match="shape"):
            await vector_store.upsert([_point("a", index=0), bad])

        info = await vector_store.get_collection_info()
        assert info["points_count"] == 0

    async def test_non_finite_rejected(self, vector_store):
        bad = _point("a")
        bad.content_vector[0] = math.nan
        with pytest.raises(VectorStoreError, match="non-finite"):
            vector_store.validate_points([bad])

    def test_meta_dimension_checked(self, vector_store):
        bad = _point("a", meta="m")
        bad.meta_vector = [0.5] * 3
        with pytest.raises(VectorStoreError, match="meta"):
            vector_store.validate_points([bad])

    async def test_client_rejection_wrapped(self):
        client = MagicMock()
        client.upsert.side_effect = RuntimeError("wrong vector name")
        store = VectorStore(client, collection_name="x", embedding_dim=EMBEDDING_DIM)

        with pytest.raises(VectorStoreError) as exc_info:
            await store.upsert([_point("a")])
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    async def test_search_rejection_wrapped(self):
        client = MagicMock()
        client.query_points.side_effect = RuntimeError("collection not found")
        store = VectorStore(client, collection_name="x", embedding_dim=EMBEDDING_DIM)

        with pytest.raises(VectorStoreError, match="Search failed") as exc_info:
            await store.search(fake_vector("q"), space=META_VECTOR)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
