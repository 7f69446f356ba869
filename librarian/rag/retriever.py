"""RAG Retriever - hybrid semantic search over content and metadata spaces.

In single-vector mode a query is matched against chunk content only. In
multi-vector mode it is matched against both the `content` and `meta` spaces
and the two result lists are merged with a weighted score.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from librarian.core.runtime_settings import SettingsProvider, load_runtime_settings
from librarian.observability import metrics
from librarian.rag.embedder import Embedder
from librarian.rag.vector_store import CONTENT_VECTOR, META_VECTOR, SearchHit, VectorStore

logger = logging.getLogger(__name__)

NO_RELEVANT_CONTEXT = "no_relevant_context"


@dataclass
class MergedHit:
    """A retrieval result after score merging."""

    id: str
    content: str
    metadata: dict
    score: float


@dataclass
class RetrievalResult:
    """Outcome of a retrieval call.

    `status` is "ok" when hits were found and "no_relevant_context" when the
    search came back empty or could not be performed (`error` says why).
    """

    query: str
    hits: list[MergedHit] = field(default_factory=list)
    status: str = NO_RELEVANT_CONTEXT
    error: str | None = None


def merge_results(
    content_hits: list[SearchHit],
    meta_hits: list[SearchHit],
    k: int,
    content_weight: float = 0.8,
    meta_weight: float = 0.2,
    score_threshold: float | None = None,
) -> list[MergedHit]:
    """Combine per-space hits into one ranked list.

    Each point's merged score is ``c * content_weight + m * meta_weight`` where
    a point missing from one list counts as 0 in that space. Results are
    sorted by merged score (ties by id), truncated to `k`, then filtered by
    `score_threshold` when given. The merged score is also written to
    ``metadata["mv_score"]``.
    """
    content_scores: dict[str, float] = {}
    meta_scores: dict[str, float] = {}
    points: dict[str, SearchHit] = {}

    for hit in content_hits:
        content_scores[hit.id] = hit.score
        points.setdefault(hit.id, hit)
    for hit in meta_hits:
        meta_scores[hit.id] = hit.score
        points.setdefault(hit.id, hit)

    merged = []
    for point_id, hit in points.items():
        score = (
            content_scores.get(point_id, 0.0) * content_weight
            + meta_scores.get(point_id, 0.0) * meta_weight
        )
        merged.append(
            MergedHit(
                id=point_id,
                content=hit.content,
                metadata={**hit.metadata, "mv_score": score},
                score=score,
            )
        )

    merged.sort(key=lambda h: (-h.score, h.id))
    merged = merged[:k]

    if score_threshold is not None:
        merged = [h for h in merged if h.score >= score_threshold]
    return merged


class Retriever:
    """Semantic retrieval over the document collection.

    Reads a fresh runtime settings snapshot per call, so retrieval depth,
    thresholds, weights and the vector layout can change without a restart.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedder: Embedder,
        settings_provider: SettingsProvider | None = None,
    ):
        self.vector_store = vector_store
        self.embedder = embedder
        self.settings_provider = settings_provider

    async def retrieve(
        self,
        query: str,
        k: int | None = None,
        content_weight: float | None = None,
        meta_weight: float | None = None,
        score_threshold: float | None = None,
    ) -> RetrievalResult:
        """Retrieve relevant chunks for a query.

        Args:
            query: User's search query
            k: Maximum results (runtime default when None)
            content_weight: Weight of the content space (multi-vector only)
            meta_weight: Weight of the meta space (multi-vector only)
            score_threshold: Minimum score (runtime default when None)

        Returns:
            RetrievalResult; failures degrade to an empty result with an error
        """
        if not query.strip():
            return RetrievalResult(query=query, error="empty query")

        started = time.perf_counter()
        runtime = await load_runtime_settings(self.settings_provider)
        k = k or runtime.retrieval_k
        threshold = runtime.score_threshold if score_threshold is None else score_threshold

        try:
            query_vector = await self.embedder.embed_query(query)

            if runtime.multivector_enabled:
                content_hits, meta_hits = await asyncio.gather(
                    self.vector_store.search(query_vector, limit=k, space=CONTENT_VECTOR),
                    # The query embedding serves as the metadata query as well
                    self.vector_store.search(query_vector, limit=k, space=META_VECTOR),
                )
                hits = merge_results(
                    content_hits,
                    meta_hits,
                    k=k,
                    content_weight=runtime.content_weight if content_weight is None else content_weight,
                    meta_weight=runtime.meta_weight if meta_weight is None else meta_weight,
                    score_threshold=threshold,
                )
            else:
                content_hits = await self.vector_store.search(
                    query_vector, limit=k, score_threshold=threshold
                )
                hits = [
                    MergedHit(id=h.id, content=h.content, metadata=h.metadata, score=h.score)
                    for h in content_hits
                ]
        except Exception as e:
            logger.error(f"[Retriever] Retrieval failed, answering without context: {e}", exc_info=True)
            metrics.RETRIEVALS.labels(status=NO_RELEVANT_CONTEXT).inc()
            return RetrievalResult(query=query, error=str(e))
        finally:
            metrics.RETRIEVAL_LATENCY.observe(time.perf_counter() - started)

        status = "ok" if hits else NO_RELEVANT_CONTEXT
        metrics.RETRIEVALS.labels(status=status).inc()
        logger.info(f"[Retriever] Query returned {len(hits)} hits (k={k}, threshold={threshold})")
        return RetrievalResult(query=query, hits=hits, status=status)

    @staticmethod
    def format_context(hits: list[MergedHit], max_chars: int = 8000) -> str:
        """Format hits as a numbered context block for a generation prompt."""
        if not hits:
            return ""

        parts = []
        total = 0
        for i, hit in enumerate(hits, 1):
            source = hit.metadata.get("filename", "unknown")
            block = f"[{i}] {source}\n{hit.content}"
            if total + len(block) > max_chars:
                break
            parts.append(block)
            total += len(block)
        return "\n\n".join(parts)
