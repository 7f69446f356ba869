"""Upload boundary: accept an original file into the library.

Validates the file, deduplicates by raw content hash, stores the bytes and
records a pending document for the next sync run.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from librarian.core.runtime_settings import SettingsProvider, load_runtime_settings
from librarian.db.repository import DocumentRepository
from librarian.observability import metrics
from librarian.rag.extractors import DocumentExtractor, supported_extensions
from librarian.rag.hashing import hash_bytes, sanitize_filename
from librarian.rag.storage import FileStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Accepted:
    """The file was stored and queued for processing."""

    document_id: str
    storage_path: str


@dataclass(frozen=True)
class Duplicate:
    """Identical bytes were uploaded before."""

    existing_id: str


@dataclass(frozen=True)
class Rejected:
    """The file cannot be ingested."""

    reason: str


UploadResult = Accepted | Duplicate | Rejected


class IngestionService:
    """Accepts uploads and records them as pending documents."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        storage: FileStorage,
        extractor: DocumentExtractor,
        settings_provider: SettingsProvider | None = None,
    ):
        self.session_maker = session_maker
        self.storage = storage
        self.extractor = extractor
        self.settings_provider = settings_provider

    async def upload(self, data: bytes, filename: str, media_type: str | None = None) -> UploadResult:
        """Ingest one uploaded file.

        Args:
            data: Original file bytes
            filename: Client-supplied filename
            media_type: Client-declared MIME type

        Returns:
            Accepted, Duplicate or Rejected
        """
        result = await self._upload(data, filename, media_type)
        metrics.UPLOADS.labels(result=type(result).__name__.lower()).inc()
        return result

    async def _upload(self, data: bytes, filename: str, media_type: str | None) -> UploadResult:
        runtime = await load_runtime_settings(self.settings_provider)

        if not data:
            return Rejected("File is empty")
        if len(data) > runtime.max_file_size_bytes:
            return Rejected(
                f"File is too large: {len(data)} bytes, limit is {runtime.max_file_size_mb} MB"
            )

        kind = self.extractor.resolve(filename, media_type)
        if kind is None:
            return Rejected(
                f"Unsupported file type: {filename} ({media_type or 'unknown'}). "
                f"Supported extensions: {', '.join(supported_extensions())}"
            )
        if not self.extractor.validate(data, kind):
            return Rejected(f"File content does not look like a valid {kind.value} file")

        raw_hash = hash_bytes(data)
        async with self.session_maker() as session:
            repo = DocumentRepository(session)

            existing = await repo.get_by_raw_hash(raw_hash)
            if existing is not None:
                logger.info(f"[Ingestion] Duplicate upload of {filename}, existing document {existing.id}")
                return Duplicate(existing_id=existing.id)

            storage_path = await self.storage.save(data, filename, raw_hash)
            try:
                document = await repo.create(
                    raw_hash=raw_hash,
                    filename=sanitize_filename(filename),
                    file_size=len(data),
                    media_type=media_type,
                    kind=kind.value,
                    storage_path=storage_path,
                )
                await session.commit()
            except IntegrityError:
                # Same bytes uploaded concurrently, the other request won
                await session.rollback()
                existing = await repo.get_by_raw_hash(raw_hash)
                if existing is None:
                    raise
                if existing.storage_path != storage_path:
                    await self.storage.delete(storage_path)
                return Duplicate(existing_id=existing.id)

        logger.info(f"[Ingestion] Accepted {filename} as document {document.id} ({kind.value}, {len(data)} bytes)")
        return Accepted(document_id=document.id, storage_path=storage_path)
