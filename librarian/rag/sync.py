"""Sync orchestrator for RAG ingestion.

Drives every pending document through the pipeline:

1. Claim the document (uploaded -> processing)
2. Extract and normalize its text
3. Deduplicate by text hash
4. Enrich with LLM metadata (best effort)
5. Split into chunks
6. Generate embeddings (content, plus meta in multi-vector mode)
7. Store in the vector database and record the processed text

Documents are processed one at a time; each outcome is committed before the
next document starts, and a failure only affects its own document.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum as PyEnum
from pathlib import Path

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from librarian.core.runtime_settings import RuntimeSettings, SettingsProvider, load_runtime_settings
from librarian.db.models import Document, DocumentStatus, VectorMode
from librarian.db.repository import DocumentRepository, ProcessedTextRepository
from librarian.observability import metrics
from librarian.rag.chunking import Chunk, TokenWindowChunker
from librarian.rag.embedder import Embedder
from librarian.rag.enrichment import MetadataEnricher, build_meta_text
from librarian.rag.extractors import DocumentExtractor, DocumentKind, ExtractionError
from librarian.rag.hashing import hash_text, normalize_text
from librarian.rag.storage import FileStorage
from librarian.rag.vector_store import VectorPoint, VectorStore, point_id

logger = logging.getLogger(__name__)


class SyncOutcome(str, PyEnum):
    """What happened to one document during a sync run."""
    EMBEDDED = "embedded"
    DUPLICATE = "duplicate"
    FAILED = "failed"
    SKIPPED = "skipped"  # claimed by a concurrent run, or the claim itself failed


@dataclass
class DocumentSyncDetail:
    """Per-document result of a sync run."""

    document_id: str
    filename: str | None
    outcome: SyncOutcome
    chunk_count: int = 0
    canonical_document_id: str | None = None
    error: str | None = None
    processing_time_ms: int = 0


@dataclass
class SyncReport:
    """Result of one sync run."""

    processed: int = 0
    skipped_duplicates: int = 0
    failed: int = 0
    details: list[DocumentSyncDetail] = field(default_factory=list)

    def add(self, detail: DocumentSyncDetail) -> None:
        self.details.append(detail)
        if detail.outcome is SyncOutcome.EMBEDDED:
            self.processed += 1
        elif detail.outcome is SyncOutcome.DUPLICATE:
            self.skipped_duplicates += 1
        elif detail.outcome is SyncOutcome.FAILED:
            self.failed += 1

    def to_dict(self) -> dict:
        return asdict(self)


class SyncOrchestrator:
    """Processes pending documents into the vector store."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        storage: FileStorage,
        extractor: DocumentExtractor,
        enricher: MetadataEnricher,
        embedder: Embedder,
        vector_store: VectorStore,
        settings_provider: SettingsProvider | None = None,
    ):
        self.session_maker = session_maker
        self.storage = storage
        self.extractor = extractor
        self.enricher = enricher
        self.embedder = embedder
        self.vector_store = vector_store
        self.settings_provider = settings_provider

    async def run(self, limit: int | None = None) -> SyncReport:
        """Process all pending documents, oldest first.

        Args:
            limit: Process at most this many documents

        Returns:
            SyncReport with per-document details
        """
        report = SyncReport()
        runtime = await load_runtime_settings(self.settings_provider)

        async with self.session_maker() as session:
            pending = await DocumentRepository(session).list_pending_ids(limit)

        if not pending:
            logger.info("[Sync] No pending documents")
            return report

        logger.info(
            f"[Sync] Starting sync of {len(pending)} documents "
            f"(multivector={runtime.multivector_enabled}, chunk_size={runtime.chunk_size})"
        )
        await self.vector_store.create_collection(multi_vector=runtime.multivector_enabled)

        for document_id in pending:
            report.add(await self.sync_document(document_id, runtime))

        logger.info(
            f"[Sync] Finished: {report.processed} embedded, "
            f"{report.skipped_duplicates} duplicates, {report.failed} failed"
        )
        return report

    async def sync_document(
        self,
        document_id: str,
        runtime: RuntimeSettings | None = None,
    ) -> DocumentSyncDetail:
        """Claim and process one document, recording its terminal status."""
        runtime = runtime or await load_runtime_settings(self.settings_provider)
        start_time = time.perf_counter()

        try:
            async with self.session_maker() as session:
                repo = DocumentRepository(session)
                claimed = await repo.claim(document_id)
                await session.commit()
                document = await repo.get(document_id) if claimed else None
        except Exception as e:
            # Left as it was; `reset` returns a stuck `processing` document to the queue
            logger.error(f"[Sync] Could not claim document {document_id}: {e}", exc_info=True)
            return DocumentSyncDetail(
                document_id=document_id,
                filename=None,
                outcome=SyncOutcome.SKIPPED,
                error=str(e) or type(e).__name__,
            )
        if document is None:
            logger.info(f"[Sync] Document {document_id} already claimed, skipping")
            return DocumentSyncDetail(document_id=document_id, filename=None, outcome=SyncOutcome.SKIPPED)

        logger.info(f"[Sync] Processing document {document_id}: {document.filename}")
        try:
            detail = await self._process(document, runtime)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"[Sync] Document {document_id} failed: {message}", exc_info=True)
            await self._record_failure(document_id, message)
            detail = DocumentSyncDetail(
                document_id=document_id,
                filename=document.filename,
                outcome=SyncOutcome.FAILED,
                error=message,
            )

        elapsed = time.perf_counter() - start_time
        detail.processing_time_ms = int(elapsed * 1000)
        metrics.DOCUMENTS_SYNCED.labels(outcome=detail.outcome.value).inc()
        metrics.SYNC_DURATION.observe(elapsed)
        return detail

    async def _record_failure(self, document_id: str, message: str) -> None:
        try:
            async with self.session_maker() as session:
                await DocumentRepository(session).mark_failed(document_id, message)
                await session.commit()
        except Exception as e:
            logger.error(
                f"[Sync] Could not record failure of document {document_id}, it stays in processing: {e}",
                exc_info=True,
            )

    async def _process(self, document: Document, runtime: RuntimeSettings) -> DocumentSyncDetail:
        start_time = time.perf_counter()

        # 1. Extract and normalize
        data = await self.storage.read(document.storage_path)
        raw_text = await asyncio.to_thread(
            self.extractor.extract,
            data,
            document.filename,
            document.media_type,
            DocumentKind(document.kind),
        )
        text = normalize_text(raw_text)
        if not text:
            raise ExtractionError("No text could be extracted from file")
        text_hash = hash_text(text)
        logger.debug(f"[Sync] Extracted {len(text)} chars, text_hash={text_hash[:12]}")

        # 2. Content deduplication
        async with self.session_maker() as session:
            texts = ProcessedTextRepository(session)
            previous = await texts.get_by_document_id(document.id)
            if previous is not None:
                # Re-processing replaces this document's earlier output
                await self.vector_store.delete_document_points(previous.text_hash)
                await texts.delete(previous)
                await session.commit()
                logger.info(f"[Sync] Removed previous output of document {document.id}")

            duplicate = await self._mark_if_duplicate(session, document, text_hash)
            if duplicate is not None:
                return duplicate

        # 3. Metadata enrichment (never fails the document)
        enrichment: dict = {}
        if runtime.enhanced_metadata_enabled:
            enrichment = await self.enricher.enrich(text, settings=runtime)

        # 4. Chunking
        chunker = TokenWindowChunker(
            chunk_size=runtime.chunk_size,
            chunk_overlap=runtime.chunk_overlap,
            preserve_structure=runtime.preserve_structure,
        )
        chunks = chunker.chunk(text)
        if not chunks:
            raise ExtractionError("No chunks generated from document")
        logger.info(f"[Sync] Generated {len(chunks)} chunks")

        # 5. Embeddings
        content_vectors, meta_vector = await self._embed(document, chunks, enrichment, runtime)

        # 6. Vector store; the same text may have been recorded while we embedded
        async with self.session_maker() as session:
            duplicate = await self._mark_if_duplicate(session, document, text_hash)
            if duplicate is not None:
                return duplicate

        processed_at = datetime.now(UTC)

        def build_points(owner: Document) -> list[VectorPoint]:
            return [
                VectorPoint(
                    id=point_id(text_hash, chunk.index),
                    content_vector=vector,
                    meta_vector=meta_vector,
                    content=chunk.text,
                    metadata=self._chunk_metadata(owner, chunk, text_hash, enrichment, processed_at),
                )
                for chunk, vector in zip(chunks, content_vectors, strict=True)
            ]

        points = build_points(document)
        await self.vector_store.upsert(points)
        metrics.CHUNKS_UPSERTED.inc(len(points))

        # 7. Record processed text
        processing_ms = int((time.perf_counter() - start_time) * 1000)
        async with self.session_maker() as session:
            try:
                await ProcessedTextRepository(session).create(
                    text_hash=text_hash,
                    document_id=document.id,
                    text_length=len(text),
                    language=runtime.language,
                    enrichment=enrichment,
                    chunk_count=len(chunks),
                    processing_ms=processing_ms,
                    vector_mode=VectorMode.MULTI if runtime.multivector_enabled else VectorMode.SINGLE,
                )
                await DocumentRepository(session).mark_embedded(document.id, text_hash)
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                return await self._resolve_insert_race(session, document, text_hash, build_points, e)

        logger.info(
            f"[Sync] Document {document.id} embedded in {processing_ms}ms: {len(chunks)} chunks"
        )
        return DocumentSyncDetail(
            document_id=document.id,
            filename=document.filename,
            outcome=SyncOutcome.EMBEDDED,
            chunk_count=len(chunks),
        )

    async def _mark_if_duplicate(
        self,
        session: AsyncSession,
        document: Document,
        text_hash: str,
    ) -> DocumentSyncDetail | None:
        existing = await ProcessedTextRepository(session).get_by_text_hash(text_hash)
        if existing is None:
            return None
        await DocumentRepository(session).mark_duplicate(document.id, existing.document_id, text_hash)
        await session.commit()
        logger.info(f"[Sync] Document {document.id} duplicates content of {existing.document_id}")
        return DocumentSyncDetail(
            document_id=document.id,
            filename=document.filename,
            outcome=SyncOutcome.DUPLICATE,
            canonical_document_id=existing.document_id,
        )

    async def _resolve_insert_race(
        self,
        session: AsyncSession,
        document: Document,
        text_hash: str,
        build_points: Callable[[Document], list[VectorPoint]],
        error: IntegrityError,
    ) -> DocumentSyncDetail:
        """Settle a lost insert after our points were already written.

        Points are keyed by text hash and chunk index, so ours overwrote the
        winner's. They are written again with the winner's provenance.
        """
        existing = await ProcessedTextRepository(session).get_by_text_hash(text_hash)
        canonical = await DocumentRepository(session).get(existing.document_id) if existing else None
        if canonical is None:
            # Nothing owns these points
            await self.vector_store.delete_document_points(text_hash)
            raise error

        await self.vector_store.upsert(build_points(canonical))
        await DocumentRepository(session).mark_duplicate(document.id, canonical.id, text_hash)
        await session.commit()
        logger.info(f"[Sync] Document {document.id} lost the race for {text_hash[:12]} to {canonical.id}")
        return DocumentSyncDetail(
            document_id=document.id,
            filename=document.filename,
            outcome=SyncOutcome.DUPLICATE,
            canonical_document_id=canonical.id,
        )

    async def _embed(
        self,
        document: Document,
        chunks: list[Chunk],
        enrichment: dict,
        runtime: RuntimeSettings,
    ) -> tuple[list[list[float]], list[float] | None]:
        batch_kwargs = {
            "batch_size": runtime.embedding_batch_size,
            "batch_delay": runtime.embedding_batch_delay,
        }
        contents = [c.text for c in chunks]

        if not runtime.multivector_enabled:
            return await self.embedder.embed_texts(contents, **batch_kwargs), None

        meta_text = build_meta_text(enrichment) or Path(document.filename).stem
        content_vectors, meta_vectors = await asyncio.gather(
            self.embedder.embed_texts(contents, **batch_kwargs),
            self.embedder.embed_texts([meta_text], **batch_kwargs),
        )
        return content_vectors, meta_vectors[0]

    @staticmethod
    def _chunk_metadata(
        document: Document,
        chunk: Chunk,
        text_hash: str,
        enrichment: dict,
        processed_at: datetime,
    ) -> dict:
        return {
            "document_id": document.id,
            "filename": document.filename,
            "media_type": document.media_type,
            "file_size": document.file_size,
            "raw_hash": document.raw_hash,
            "text_hash": text_hash,
            "chunk_index": chunk.index,
            "start_char": chunk.start_char,
            "end_char": chunk.end_char,
            "token_count": chunk.token_count,
            "uploaded_at": document.created_at.isoformat() if document.created_at else None,
            "processed_at": processed_at.isoformat(),
            "enrichment": enrichment,
        }

    async def reset(self, statuses: Iterable[DocumentStatus] = (DocumentStatus.FAILED,)) -> int:
        """Return documents in `statuses` to the pending queue.

        Returns:
            Number of documents reset
        """
        async with self.session_maker() as session:
            count = await DocumentRepository(session).reset(statuses)
            await session.commit()
        logger.info(f"[Sync] Reset {count} documents to uploaded")
        return count

    async def stats(self) -> dict:
        """Document counts per status and whether a sync is needed."""
        async with self.session_maker() as session:
            by_status = await DocumentRepository(session).count_by_status()
            unique_texts = await ProcessedTextRepository(session).count()
        return {
            "by_status": by_status,
            "total": sum(by_status.values()),
            "unique_texts": unique_texts,
            "sync_needed": by_status[DocumentStatus.UPLOADED.value] > 0,
        }
