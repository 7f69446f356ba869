"""Tests for score merging and the Retriever."""

from unittest.mock import AsyncMock

import pytest

from librarian.core.runtime_settings import StaticSettingsProvider
from librarian.rag.embedder import Embedder, EmbeddingErrorKind, EmbeddingProviderError
from librarian.rag.retriever import NO_RELEVANT_CONTEXT, MergedHit, Retriever, merge_results
from librarian.rag.vector_store import CONTENT_VECTOR, META_VECTOR, SearchHit, VectorStore


def _hit(point_id: str, score: float) -> SearchHit:
    return SearchHit(id=point_id, score=score, content=f"text {point_id}", metadata={"filename": f"{point_id}.txt"})


class TestMergeResults:
    def test_weighted_sum(self):
        merged = merge_results([_hit("a", 0.9)], [_hit("a", 0.5)], k=5)

        assert len(merged) == 1
        assert merged[0].score == pytest.approx(0.9 * 0.8 + 0.5 * 0.2)
        assert merged[0].metadata["mv_score"] == merged[0].score

    def test_missing_space_counts_as_zero(self):
        merged = merge_results([_hit("a", 0.9)], [_hit("b", 0.9)], k=5)
        scores = {h.id: h.score for h in merged}

        assert scores["a"] == pytest.approx(0.72)
        assert scores["b"] == pytest.approx(0.18)

    def test_sorted_descending_with_id_tiebreak(self):
        merged = merge_results([_hit("b", 0.5), _hit("a", 0.5), _hit("c", 0.9)], [], k=5)
        assert [h.id for h in merged] == ["c", "a", "b"]

    def test_truncates_to_k(self):
        content = [_hit(str(i), i / 10) for i in range(10)]
        merged = merge_results(content, [], k=3)
        assert [h.id for h in merged] == ["9", "8", "7"]

    def test_threshold_applied_after_truncation(self):
        content = [_hit("a", 1.0), _hit("b", 0.5), _hit("c", 0.4)]
        merged = merge_results(content, [], k=2, content_weight=1.0, meta_weight=0.0, score_threshold=0.6)
        assert [h.id for h in merged] == ["a"]

    def test_custom_weights(self):
        merged = merge_results([_hit("a", 0.2)], [_hit("a", 1.0)], k=1, content_weight=0.5, meta_weight=0.5)
        assert merged[0].score == pytest.approx(0.6)

    def test_source_metadata_not_mutated(self):
        hit = _hit("a", 0.9)
        merge_results([hit], [], k=1)
        assert "mv_score" not in hit.metadata

    def test_empty_inputs(self):
        assert merge_results([], [], k=5) == []


@pytest.fixture
def mock_store():
    store = AsyncMock(spec=VectorStore)
    store.search.return_value = [_hit("a", 0.9), _hit("b", 0.7)]
    return store


@pytest.fixture
def mock_embedder():
    embedder = AsyncMock(spec=Embedder)
    embedder.embed_query.return_value = [0.1, 0.2, 0.3]
    return embedder


class TestRetriever:
    async def test_single_vector_search(self, mock_store, mock_embedder):
        retriever = Retriever(mock_store, mock_embedder, StaticSettingsProvider({"retrieval_k": 4}))

        result = await retriever.retrieve("what is a habit?")

        assert result.status == "ok"
        assert [h.id for h in result.hits] == ["a", "b"]
        mock_store.search.assert_awaited_once_with([0.1, 0.2, 0.3], limit=4, score_threshold=0.5)

    async def test_request_overrides_runtime_defaults(self, mock_store, mock_embedder):
        retriever = Retriever(mock_store, mock_embedder, StaticSettingsProvider())

        await retriever.retrieve("q", k=2, score_threshold=0.1)

        mock_store.search.assert_awaited_once_with([0.1, 0.2, 0.3], limit=2, score_threshold=0.1)

    async def test_multi_vector_merges_both_spaces(self, mock_store, mock_embedder):
        mock_store.search.side_effect = [
            [_hit("a", 0.9), _hit("b", 0.8)],
            [_hit("b", 0.9)],
        ]
        provider = StaticSettingsProvider({"multivector_enabled": True, "score_threshold": 0.0})
        retriever = Retriever(mock_store, mock_embedder, provider)

        result = await retriever.retrieve("q", k=5)

        spaces = {c.kwargs["space"] for c in mock_store.search.await_args_list}
        assert spaces == {CONTENT_VECTOR, META_VECTOR}
        assert [h.id for h in result.hits] == ["b", "a"]
        assert result.hits[0].score == pytest.approx(0.8 * 0.8 + 0.9 * 0.2)

    async def test_no_hits(self, mock_store, mock_embedder):
        mock_store.search.return_value = []
        retriever = Retriever(mock_store, mock_embedder)

        result = await retriever.retrieve("q")

        assert result.status == NO_RELEVANT_CONTEXT
        assert result.hits == []
        assert result.error is None

    async def test_embedding_failure_degrades(self, mock_store, mock_embedder):
        mock_embedder.embed_query.side_effect = EmbeddingProviderError(EmbeddingErrorKind.RATE_LIMITED, "slow down")
        retriever = Retriever(mock_store, mock_embedder)

        result = await retriever.retrieve("q")

        assert result.status == NO_RELEVANT_CONTEXT
        assert "rate_limited" in result.error
        mock_store.search.assert_not_awaited()

    async def test_store_failure_degrades(self, mock_store, mock_embedder):
        mock_store.search.side_effect = RuntimeError("collection not found")
        retriever = Retriever(mock_store, mock_embedder)

        result = await retriever.retrieve("q")

        assert result.status == NO_RELEVANT_CONTEXT
        assert result.error == "collection not found"

    async def test_blank_query(self, mock_store, mock_embedder):
        result = await Retriever(mock_store, mock_embedder).retrieve("   ")

        assert result.status == NO_RELEVANT_CONTEXT
        mock_embedder.embed_query.assert_not_awaited()


class TestFormatContext:
    def test_numbered_blocks(self):
        hits = [
            MergedHit(id="1", content="First chunk", metadata={"filename": "a.pdf"}, score=0.9),
            MergedHit(id="2", content="Second chunk", metadata={}, score=0.8),
        ]
        assert Retriever.format_context(hits) == "[1] a.pdf\nFirst chunk\n\n[2] unknown\nSecond chunk"

    def test_respects_budget(self):
        hits = [MergedHit(id=str(i), content="x" * 100, metadata={}, score=1.0) for i in range(5)]
        assert Retriever.format_context(hits, max_chars=250).count("[") == 2

    def test_empty(self):
        assert Retriever.format_context([]) == ""
