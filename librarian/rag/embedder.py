"""Embedding service using the OpenAI embeddings API.

Generates vector embeddings for text chunks and queries. Calls are batched
and throttled to stay within provider throughput limits; recent results are
kept in a small bounded cache owned by the Embedder instance.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from enum import Enum as PyEnum

import openai
from openai import AsyncOpenAI

from librarian.observability import metrics

logger = logging.getLogger(__name__)

CACHE_KEY_LENGTH = 100


class EmbeddingErrorKind(str, PyEnum):
    """Classification of embedding provider failures."""
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    AUTH_FAILED = "auth_failed"
    OTHER = "other"


class EmbeddingProviderError(Exception):
    """Raised when the embedding provider call fails."""

    def __init__(self, kind: EmbeddingErrorKind, message: str):
        self.kind = kind
        super().__init__(f"Embedding request failed ({kind.value}): {message}")

    @property
    def retryable(self) -> bool:
        """Whether retrying later may succeed without operator action."""
        return self.kind is EmbeddingErrorKind.RATE_LIMITED


def classify_error(exc: Exception) -> EmbeddingErrorKind:
    """Map a provider exception to an EmbeddingErrorKind."""
    message = str(exc).lower()

    if isinstance(exc, openai.RateLimitError):
        if getattr(exc, "code", None) == "insufficient_quota" or "quota" in message:
            return EmbeddingErrorKind.QUOTA_EXCEEDED
        return EmbeddingErrorKind.RATE_LIMITED
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return EmbeddingErrorKind.AUTH_FAILED

    # Proxies and compatible gateways do not always map to SDK exception types
    if "quota" in message:
        return EmbeddingErrorKind.QUOTA_EXCEEDED
    if "rate limit" in message or "429" in message:
        return EmbeddingErrorKind.RATE_LIMITED
    if "api key" in message or "unauthorized" in message or "401" in message:
        return EmbeddingErrorKind.AUTH_FAILED
    return EmbeddingErrorKind.OTHER


class Embedder:
    """OpenAI embedding service.

    Uses text-embedding-3-large by default (3072 dimensions).
    """

    DEFAULT_MODEL = "text-embedding-3-large"
    DEFAULT_BATCH_SIZE = 5
    DEFAULT_BATCH_DELAY = 0.5

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = DEFAULT_MODEL,
        dimensions: int | None = None,
        cache_size: int = 100,
        min_interval: float = 0.2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.model = model
        self.dimensions = dimensions
        self.max_cache_size = cache_size
        self.min_interval = min_interval
        self._sleep = sleep
        self._clock = clock
        self._last_request_at: float | None = None
        # prefix -> (full text, vector); least recently used first
        self._cache: OrderedDict[str, tuple[str, list[float]]] = OrderedDict()

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    def _cache_get(self, text: str) -> list[float] | None:
        key = text[:CACHE_KEY_LENGTH]
        entry = self._cache.get(key)
        # A shared prefix is not a hit unless the whole text matches
        if entry is None or entry[0] != text:
            return None
        self._cache.move_to_end(key)
        return entry[1]

    def _cache_put(self, text: str, vector: list[float]) -> None:
        if self.max_cache_size <= 0:
            return
        key = text[:CACHE_KEY_LENGTH]
        self._cache[key] = (text, vector)
        self._cache.move_to_end(key)
        while len(self._cache) > self.max_cache_size:
            self._cache.popitem(last=False)

    # ------------------------------------------------------------------
    # Provider calls
    # ------------------------------------------------------------------

    async def _create(self, inputs: str | list[str]) -> list[list[float]]:
        kwargs = {"input": inputs, "model": self.model}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions

        count = 1 if isinstance(inputs, str) else len(inputs)
        metrics.EMBEDDING_REQUESTS.inc()
        metrics.EMBEDDED_TEXTS.inc(count)
        try:
            response = await self.client.embeddings.create(**kwargs)
        except Exception as e:
            kind = classify_error(e)
            metrics.EMBEDDING_ERRORS.labels(kind=kind.value).inc()
            logger.error(f"[Embedder] Embedding request failed ({kind.value}): {e}")
            raise EmbeddingProviderError(kind, str(e)) from e
        finally:
            self._last_request_at = self._clock()

        vectors = [item.embedding for item in sorted(response.data, key=lambda d: d.index)]
        if len(vectors) != count:
            raise EmbeddingProviderError(
                EmbeddingErrorKind.OTHER,
                f"expected {count} embeddings, provider returned {len(vectors)}",
            )
        return vectors

    async def _respect_min_interval(self) -> None:
        if self._last_request_at is None or self.min_interval <= 0:
            return
        wait = self.min_interval - (self._clock() - self._last_request_at)
        if wait > 0:
            await self._sleep(wait)

    async def embed_text(self, text: str) -> list[float]:
        """Generate embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            ValueError: If the text is empty
            EmbeddingProviderError: If the provider call fails
        """
        text = text.strip()
        if not text:
            raise ValueError("Cannot embed empty text")

        cached = self._cache_get(text)
        if cached is not None:
            metrics.EMBEDDING_CACHE_HITS.inc()
            return cached

        await self._respect_min_interval()
        vector = (await self._create(text))[0]
        self._cache_put(text, vector)
        return vector

    async def embed_texts(
        self,
        texts: list[str],
        batch_size: int | None = None,
        batch_delay: float | None = None,
    ) -> list[list[float]]:
        """Generate embeddings for multiple texts in batches.

        Cached texts are served locally; only distinct misses go to the
        provider, `batch_size` at a time with `batch_delay` seconds between
        requests.

        Args:
            texts: List of texts to embed
            batch_size: Texts per provider request
            batch_delay: Pause between consecutive requests, in seconds

        Returns:
            List of embedding vectors, aligned with `texts`
        """
        if not texts:
            return []

        batch_size = batch_size or self.DEFAULT_BATCH_SIZE
        batch_delay = self.DEFAULT_BATCH_DELAY if batch_delay is None else batch_delay

        cleaned = [t.strip() for t in texts]
        if any(not t for t in cleaned):
            raise ValueError("Cannot embed empty text")

        results: list[list[float] | None] = [None] * len(cleaned)
        misses: dict[str, list[int]] = {}
        for i, text in enumerate(cleaned):
            cached = self._cache_get(text)
            if cached is not None:
                metrics.EMBEDDING_CACHE_HITS.inc()
                results[i] = cached
            else:
                misses.setdefault(text, []).append(i)

        pending = list(misses)
        total_batches = (len(pending) + batch_size - 1) // batch_size
        if pending:
            logger.info(
                f"[Embedder] Embedding {len(pending)} texts in {total_batches} batches "
                f"({len(cleaned) - sum(len(v) for v in misses.values())} cached)"
            )

        for batch_num, batch_start in enumerate(range(0, len(pending), batch_size)):
            if batch_num > 0 and batch_delay > 0:
                await self._sleep(batch_delay)
            else:
                await self._respect_min_interval()

            batch = pending[batch_start : batch_start + batch_size]
            vectors = await self._create(batch)

            for text, vector in zip(batch, vectors, strict=True):
                self._cache_put(text, vector)
                for i in misses[text]:
                    results[i] = vector

        return results

    async def embed_query(self, query: str) -> list[float]:
        """Embed a search query.

        Alias for embed_text, but can be extended for query-specific processing.
        """
        return await self.embed_text(query)
