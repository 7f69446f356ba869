"""Database repositories for documents, processed texts and settings.

Provides async CRUD operations. Repositories never commit; the caller owns
the transaction boundary.
"""

from collections.abc import Iterable
from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from librarian.db.models import (
    Document,
    DocumentStatus,
    ProcessedText,
    SettingType,
    SystemSetting,
    VectorMode,
)


class DocumentRepository:
    """Repository for uploaded document operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        raw_hash: str,
        filename: str,
        file_size: int,
        media_type: str | None,
        kind: str,
        storage_path: str,
    ) -> Document:
        """Insert a new document in `uploaded` status."""
        document = Document(
            raw_hash=raw_hash,
            filename=filename,
            file_size=file_size,
            media_type=media_type,
            kind=kind,
            storage_path=storage_path,
            status=DocumentStatus.UPLOADED,
        )
        self.db.add(document)
        await self.db.flush()
        return document

    async def get(self, document_id: str) -> Document | None:
        """Get a document by ID."""
        result = await self.db.execute(select(Document).where(Document.id == document_id))
        return result.scalar_one_or_none()

    async def get_by_raw_hash(self, raw_hash: str) -> Document | None:
        """Get the document whose original bytes hash to `raw_hash`."""
        result = await self.db.execute(select(Document).where(Document.raw_hash == raw_hash))
        return result.scalar_one_or_none()

    async def list_documents(
        self,
        status: DocumentStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Document]:
        """List documents, newest first."""
        query = select(Document)
        if status is not None:
            query = query.where(Document.status == status)
        query = query.order_by(Document.created_at.desc()).limit(limit).offset(offset)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_pending_ids(self, limit: int | None = None) -> list[str]:
        """IDs of documents awaiting processing, oldest first."""
        query = (
            select(Document.id)
            .where(Document.status == DocumentStatus.UPLOADED)
            .order_by(Document.created_at.asc(), Document.id.asc())
        )
        if limit is not None:
            query = query.limit(limit)

        result = await self.db.execute(query)
        return [row[0] for row in result.all()]

    async def claim(self, document_id: str) -> bool:
        """Atomically move a document from `uploaded` to `processing`.

        Returns:
            True if this caller won the claim, False if the document was
            already claimed or is no longer pending.
        """
        result = await self.db.execute(
            update(Document)
            .where(Document.id == document_id, Document.status == DocumentStatus.UPLOADED)
            .values(status=DocumentStatus.PROCESSING, error_message=None)
        )
        return result.rowcount == 1

    async def mark_embedded(self, document_id: str, text_hash: str) -> None:
        """Mark a document as embedded."""
        await self._set_outcome(
            document_id,
            status=DocumentStatus.EMBEDDED,
            text_hash=text_hash,
            error_message=None,
        )

    async def mark_duplicate(
        self,
        document_id: str,
        canonical_document_id: str | None,
        text_hash: str | None = None,
    ) -> None:
        """Mark a document as a content duplicate of `canonical_document_id`."""
        await self._set_outcome(
            document_id,
            status=DocumentStatus.DUPLICATE,
            canonical_document_id=canonical_document_id,
            text_hash=text_hash,
            error_message=None,
        )

    async def mark_failed(self, document_id: str, error_message: str) -> None:
        """Mark a document as failed with a human readable reason."""
        await self._set_outcome(
            document_id,
            status=DocumentStatus.FAILED,
            error_message=error_message[:2000],
        )

    async def _set_outcome(self, document_id: str, **values) -> None:
        await self.db.execute(
            update(Document)
            .where(Document.id == document_id)
            .values(processed_at=datetime.now(UTC), **values)
        )

    async def reset(self, statuses: Iterable[DocumentStatus]) -> int:
        """Move documents in the given statuses back to `uploaded`.

        Returns:
            Number of documents reset
        """
        statuses = list(statuses)
        if not statuses:
            return 0
        result = await self.db.execute(
            update(Document)
            .where(Document.status.in_(statuses))
            .values(status=DocumentStatus.UPLOADED, error_message=None, processed_at=None)
        )
        return result.rowcount or 0

    async def count_by_status(self) -> dict[str, int]:
        """Count documents per status (every status present, zero if none)."""
        result = await self.db.execute(
            select(Document.status, func.count(Document.id)).group_by(Document.status)
        )
        counts = {status.value: 0 for status in DocumentStatus}
        for status, count in result.all():
            counts[DocumentStatus(status).value] = count
        return counts


class ProcessedTextRepository:
    """Repository for normalized text records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_text_hash(self, text_hash: str) -> ProcessedText | None:
        """Look up processed text by its content hash."""
        result = await self.db.execute(
            select(ProcessedText).where(ProcessedText.text_hash == text_hash)
        )
        return result.scalar_one_or_none()

    async def get_by_document_id(self, document_id: str) -> ProcessedText | None:
        """Look up the processed text a canonical document produced."""
        result = await self.db.execute(
            select(ProcessedText).where(ProcessedText.document_id == document_id)
        )
        return result.scalar_one_or_none()

    async def delete(self, processed: ProcessedText) -> None:
        await self.db.delete(processed)
        await self.db.flush()

    async def create(
        self,
        text_hash: str,
        document_id: str,
        text_length: int,
        language: str,
        enrichment: dict | None,
        chunk_count: int,
        processing_ms: int,
        vector_mode: VectorMode,
    ) -> ProcessedText:
        """Insert a processed text row.

        Raises:
            sqlalchemy.exc.IntegrityError: If `text_hash` already exists
        """
        processed = ProcessedText(
            text_hash=text_hash,
            document_id=document_id,
            text_length=text_length,
            language=language,
            enrichment=enrichment or None,
            chunk_count=chunk_count,
            processing_ms=processing_ms,
            vector_mode=vector_mode,
            embedded_at=datetime.now(UTC),
        )
        self.db.add(processed)
        await self.db.flush()
        return processed

    async def count(self) -> int:
        """Number of distinct processed texts."""
        result = await self.db.execute(select(func.count(ProcessedText.id)))
        return result.scalar() or 0


class SettingsRepository:
    """Repository for runtime settings rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_all(self) -> list[SystemSetting]:
        """Get every stored setting."""
        result = await self.db.execute(select(SystemSetting).order_by(SystemSetting.name))
        return list(result.scalars().all())

    async def upsert(
        self,
        name: str,
        value: str,
        value_type: SettingType = SettingType.STRING,
    ) -> SystemSetting:
        """Create or replace a setting value."""
        result = await self.db.execute(select(SystemSetting).where(SystemSetting.name == name))
        setting = result.scalar_one_or_none()
        if setting is None:
            setting = SystemSetting(name=name, value=value, value_type=value_type)
            self.db.add(setting)
        else:
            setting.value = value
            setting.value_type = value_type
        await self.db.flush()
        return setting
