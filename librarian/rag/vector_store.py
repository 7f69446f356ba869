"""Qdrant vector store client.

Manages the document collection in one of two layouts: a single unnamed
vector space (chunk content only) or two named spaces, `content` and `meta`,
for hybrid retrieval.
"""

import logging
from dataclasses import dataclass, field
from uuid import NAMESPACE_DNS, uuid5

import numpy as np
from qdrant_client import QdrantClient
from qdrant_client.http import models as qdrant_models
from qdrant_client.http.models import Distance, PayloadSchemaType, VectorParams

from librarian.core.config import Settings

logger = logging.getLogger(__name__)

CONTENT_VECTOR = "content"
META_VECTOR = "meta"

UPSERT_BATCH_SIZE = 100


class VectorStoreError(Exception):
    """Raised when points are invalid or the vector store rejects a call."""
    pass


def point_id(text_hash: str, chunk_index: int) -> str:
    """Stable point ID for a chunk; re-processing overwrites instead of duplicating."""
    return str(uuid5(NAMESPACE_DNS, f"{text_hash}:{chunk_index}"))


@dataclass
class VectorPoint:
    """A chunk ready for upsert."""

    id: str
    content_vector: list[float]
    content: str
    metadata: dict = field(default_factory=dict)
    meta_vector: list[float] | None = None

    @property
    def is_dual(self) -> bool:
        return self.meta_vector is not None


@dataclass
class SearchHit:
    """A scored point returned by a search."""

    id: str
    score: float
    content: str
    metadata: dict


class VectorStore:
    """Qdrant vector store for chunk embeddings.

    Payload per point: `content` (chunk text) and `metadata` (document and
    chunk provenance plus enrichment).
    """

    def __init__(
        self,
        client: QdrantClient,
        collection_name: str,
        embedding_dim: int | None = None,
    ):
        self.client = client
        self.collection_name = collection_name
        self.embedding_dim = embedding_dim

    async def collection_exists(self) -> bool:
        collections = self.client.get_collections()
        return self.collection_name in [c.name for c in collections.collections]

    async def create_collection(
        self,
        dimensions: int | None = None,
        multi_vector: bool = False,
        recreate: bool = False,
    ) -> bool:
        """Create the collection.

        Args:
            dimensions: Vector size (defaults to the configured embedding size)
            multi_vector: Create named `content` and `meta` spaces
            recreate: Drop an existing collection first

        Returns:
            True if created, False if it already existed and was kept
        """
        dim = dimensions or self.embedding_dim
        if not dim:
            raise VectorStoreError("Vector dimensions are required to create a collection")

        if await self.collection_exists():
            if not recreate:
                return False
            logger.info(f"[VectorStore] Recreating collection '{self.collection_name}'")
            self.client.delete_collection(self.collection_name)

        params = VectorParams(size=dim, distance=Distance.COSINE)
        vectors_config = {CONTENT_VECTOR: params, META_VECTOR: params} if multi_vector else params

        self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=vectors_config,
            # Store large text payloads on disk to save RAM
            on_disk_payload=True,
        )

        # Payload indexes for document-level filters
        for field_name in ("metadata.document_id", "metadata.text_hash"):
            self.client.create_payload_index(
                collection_name=self.collection_name,
                field_name=field_name,
                field_schema=PayloadSchemaType.KEYWORD,
            )

        self.embedding_dim = dim
        logger.info(
            f"[VectorStore] Created collection '{self.collection_name}' "
            f"(dim={dim}, layout={'multi' if multi_vector else 'single'})"
        )
        return True

    async def delete_collection(self) -> bool:
        """Delete the collection. Returns False if it did not exist."""
        if not await self.collection_exists():
            return False
        self.client.delete_collection(self.collection_name)
        return True

    def validate_points(self, points: list[VectorPoint]) -> None:
        """Check a batch is homogeneous, consistently sized and finite.

        Raises:
            VectorStoreError: On the first problem found
        """
        if not points:
            return

        dual = points[0].is_dual
        if any(p.is_dual != dual for p in points):
            raise VectorStoreError("Batch mixes single-vector and dual-vector points")

        spaces = [("content", lambda p: p.content_vector)]
        if dual:
            spaces.append(("meta", lambda p: p.meta_vector))

        for space, get_vector in spaces:
            expected = self.embedding_dim or len(get_vector(points[0]))
            for p in points:
                vector = np.asarray(get_vector(p), dtype=np.float64)
                if vector.ndim != 1 or vector.shape[0] != expected:
                    raise VectorStoreError(
                        f"Point {p.id}: {space} vector has shape {vector.shape}, expected ({expected},)"
                    )
                if not np.isfinite(vector).all():
                    raise VectorStoreError(f"Point {p.id}: {space} vector has non-finite values")

    def _to_point_struct(self, point: VectorPoint) -> qdrant_models.PointStruct:
        if point.is_dual:
            vector = {CONTENT_VECTOR: point.content_vector, META_VECTOR: point.meta_vector}
        else:
            vector = point.content_vector
        return qdrant_models.PointStruct(
            id=point.id,
            vector=vector,
            payload={"content": point.content, "metadata": point.metadata},
        )

    async def upsert(self, points: list[VectorPoint]) -> int:
        """Insert or update points.

        The whole batch is validated before anything is written.

        Returns:
            Number of points upserted

        Raises:
            VectorStoreError: If validation fails or Qdrant rejects a batch
        """
        if not points:
            return 0

        self.validate_points(points)
        structs = [self._to_point_struct(p) for p in points]

        logger.info(
            f"[VectorStore] Upserting {len(structs)} points to collection '{self.collection_name}'"
        )

        total_upserted = 0
        for i in range(0, len(structs), UPSERT_BATCH_SIZE):
            batch = structs[i : i + UPSERT_BATCH_SIZE]
            try:
                self.client.upsert(collection_name=self.collection_name, points=batch)
            except Exception as e:
                first = points[i]
                logger.error(
                    f"[VectorStore] Upsert rejected: first_id={first.id}, "
                    f"content_dim={len(first.content_vector)}, "
                    f"meta_dim={len(first.meta_vector) if first.meta_vector is not None else None}, "
                    f"metadata_keys={sorted(first.metadata)}: {e}"
                )
                raise VectorStoreError(f"Upsert failed: {e}") from e
            total_upserted += len(batch)

        logger.info(f"[VectorStore] Successfully upserted {total_upserted} points")
        return total_upserted

    async def delete_document_points(self, text_hash: str) -> None:
        """Delete all points derived from one processed text."""
        self.client.delete(
            collection_name=self.collection_name,
            points_selector=qdrant_models.FilterSelector(
                filter=qdrant_models.Filter(
                    must=[
                        qdrant_models.FieldCondition(
                            key="metadata.text_hash",
                            match=qdrant_models.MatchValue(value=text_hash),
                        )
                    ]
                )
            ),
        )

    async def search(
        self,
        query_vector: list[float],
        limit: int = 5,
        space: str | None = None,
        score_threshold: float | None = None,
    ) -> list[SearchHit]:
        """Nearest-neighbour search in one vector space.

        Args:
            query_vector: Query embedding
            limit: Maximum results
            space: Named space (`content` or `meta`), None for the unnamed one
            score_threshold: Minimum similarity score

        Returns:
            Hits sorted by descending score

        Raises:
            VectorStoreError: If Qdrant rejects the query
        """
        try:
            results = self.client.query_points(
                collection_name=self.collection_name,
                query=query_vector,
                using=space,
                limit=limit,
                score_threshold=score_threshold,
                with_payload=True,
            )
        except Exception as e:
            logger.error(
                f"[VectorStore] Search rejected: collection={self.collection_name}, "
                f"space={space}, query_dim={len(query_vector)}, limit={limit}: {e}"
            )
            raise VectorStoreError(f"Search failed: {e}") from e

        return [
            SearchHit(
                id=str(point.id),
                score=point.score,
                content=(point.payload or {}).get("content", ""),
                metadata=(point.payload or {}).get("metadata", {}),
            )
            for point in results.points
        ]

    async def get_collection_info(self) -> dict | None:
        """Get collection statistics, None if the collection is missing."""
        if not await self.collection_exists():
            return None
        info = self.client.get_collection(self.collection_name)
        return {
            "name": self.collection_name,
            "points_count": info.points_count,
            "status": info.status.value,
        }


def create_vector_store(settings: Settings) -> VectorStore:
    """Build a VectorStore from process settings."""
    # Batched upserts need more than the 5s default timeout
    client = QdrantClient(
        url=settings.qdrant_url,
        api_key=settings.qdrant_api_key,
        timeout=settings.qdrant_timeout,
    )
    return VectorStore(
        client,
        collection_name=settings.qdrant_collection,
        embedding_dim=settings.embedding_dimensions,
    )
