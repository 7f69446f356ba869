"""Tests for the Embedder: caching, batching, throttling and error mapping."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, call

import httpx
import openai
import pytest

from librarian.rag.embedder import (
    Embedder,
    EmbeddingErrorKind,
    EmbeddingProviderError,
    classify_error,
)
from tests.fakes import fake_vector, make_embeddings_client


def _sent_inputs(client) -> list:
    return [c.kwargs["input"] for c in client.embeddings.create.await_args_list]


def _status_error(cls, status_code: int, message: str, body: dict | None = None):
    request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
    response = httpx.Response(status_code, request=request)
    return cls(message, response=response, body=body)


class TestEmbedText:
    async def test_returns_provider_vector(self, embedder):
        assert await embedder.embed_text("hello") == fake_vector("hello")

    async def test_strips_input(self, embedder, embeddings_client):
        await embedder.embed_text("  hello \n")
        assert _sent_inputs(embeddings_client) == ["hello"]

    async def test_empty_text_rejected(self, embedder, embeddings_client):
        with pytest.raises(ValueError):
            await embedder.embed_text("   ")
        embeddings_client.embeddings.create.assert_not_awaited()

    async def test_repeated_text_served_from_cache(self, embedder, embeddings_client):
        first = await embedder.embed_text("hello")
        second = await embedder.embed_text("hello")

        assert first == second
        assert embeddings_client.embeddings.create.await_count == 1
        assert embedder.cache_size == 1

    async def test_shared_prefix_is_not_a_cache_hit(self, embedder, embeddings_client):
        prefix = "p" * 100
        a = await embedder.embed_text(prefix + " first")
        b = await embedder.embed_text(prefix + " second")

        assert a != b
        assert b == fake_vector(prefix + " second")
        assert embeddings_client.embeddings.create.await_count == 2

    async def test_cache_is_bounded_lru(self, embeddings_client, sleep):
        embedder = Embedder(client=embeddings_client, cache_size=2, sleep=sleep)

        await embedder.embed_text("a")
        await embedder.embed_text("b")
        await embedder.embed_text("a")  # refresh "a"
        await embedder.embed_text("c")  # evicts "b"

        assert embedder.cache_size == 2
        await embedder.embed_text("a")
        await embedder.embed_text("b")
        assert _sent_inputs(embeddings_client) == ["a", "b", "c", "b"]

    async def test_clear_cache(self, embedder):
        await embedder.embed_text("a")
        embedder.clear_cache()
        assert embedder.cache_size == 0

    async def test_min_interval_between_requests(self, embeddings_client, sleep):
        embedder = Embedder(client=embeddings_client, min_interval=0.2, sleep=sleep, clock=lambda: 100.0)

        await embedder.embed_text("a")
        sleep.assert_not_awaited()

        await embedder.embed_text("b")
        sleep.assert_awaited_once_with(pytest.approx(0.2))

    async def test_dimensions_forwarded(self, embeddings_client, sleep):
        embedder = Embedder(client=embeddings_client, model="m", dimensions=256, sleep=sleep)
        await embedder.embed_query("q")

        kwargs = embeddings_client.embeddings.create.await_args.kwargs
        assert kwargs["model"] == "m"
        assert kwargs["dimensions"] == 256


class TestEmbedTexts:
    async def test_empty_list(self, embedder, embeddings_client):
        assert await embedder.embed_texts([]) == []
        embeddings_client.embeddings.create.assert_not_awaited()

    async def test_preserves_order(self, embedder):
        texts = ["one", "two", "three"]
        assert await embedder.embed_texts(texts) == [fake_vector(t) for t in texts]

    async def test_any_empty_text_rejected(self, embedder, embeddings_client):
        with pytest.raises(ValueError):
            await embedder.embed_texts(["fine", " "])
        embeddings_client.embeddings.create.assert_not_awaited()

    async def test_duplicates_sent_once(self, embedder, embeddings_client):
        vectors = await embedder.embed_texts(["a", "b", "a"])

        assert vectors[0] == vectors[2]
        assert _sent_inputs(embeddings_client) == [["a", "b"]]

    async def test_cached_texts_skipped(self, embedder, embeddings_client):
        await embedder.embed_text("a")
        await embedder.embed_texts(["a", "b"])
        assert _sent_inputs(embeddings_client) == ["a", ["b"]]

    async def test_batches_with_delay(self, embedder, embeddings_client, sleep):
        texts = [f"text {i}" for i in range(7)]
        await embedder.embed_texts(texts, batch_size=3, batch_delay=0.5)

        assert _sent_inputs(embeddings_client) == [texts[0:3], texts[3:6], texts[6:7]]
        assert sleep.await_args_list == [call(0.5), call(0.5)]


class TestProviderErrors:
    async def test_provider_failure_wrapped(self, embedder, embeddings_client):
        embeddings_client.embeddings.create.side_effect = _status_error(
            openai.RateLimitError, 429, "Rate limit reached"
        )

        with pytest.raises(EmbeddingProviderError) as exc_info:
            await embedder.embed_text("hello")

        assert exc_info.value.kind is EmbeddingErrorKind.RATE_LIMITED
        assert exc_info.value.retryable
        assert embedder.cache_size == 0

    async def test_count_mismatch(self, sleep):
        client = make_embeddings_client()
        client.embeddings.create = AsyncMock(return_value=SimpleNamespace(data=[]))
        embedder = Embedder(client=client, sleep=sleep)

        with pytest.raises(EmbeddingProviderError):
            await embedder.embed_texts(["a", "b"])

    def test_classify_quota_exhaustion(self):
        exc = _status_error(
            openai.RateLimitError, 429, "You exceeded your quota", body={"code": "insufficient_quota"}
        )
        assert classify_error(exc) is EmbeddingErrorKind.QUOTA_EXCEEDED

    def test_classify_auth_failure(self):
        exc = _status_error(openai.AuthenticationError, 401, "Incorrect API key provided")
        assert classify_error(exc) is EmbeddingErrorKind.AUTH_FAILED
        assert not EmbeddingProviderError(EmbeddingErrorKind.AUTH_FAILED, "x").retryable

    @pytest.mark.parametrize(
        "message, kind",
        [
            ("Error code: 429 - slow down", EmbeddingErrorKind.RATE_LIMITED),
            ("monthly quota used up", EmbeddingErrorKind.QUOTA_EXCEEDED),
            ("401 Unauthorized", EmbeddingErrorKind.AUTH_FAILED),
            ("connection reset by peer", EmbeddingErrorKind.OTHER),
        ],
    )
    def test_classify_by_message(self, message, kind):
        assert classify_error(RuntimeError(message)) is kind
