"""SQLAlchemy database models.

Defines the persisted entities of the ingestion pipeline: uploaded documents,
the processed text they deduplicate into, and runtime settings.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    # Persist enum values ("uploaded"), not member names ("UPLOADED")
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ============================================
# Enums
# ============================================

class DocumentStatus(str, PyEnum):
    """Document lifecycle status.

    uploaded -> processing -> embedded | duplicate | failed
    """
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    EMBEDDED = "embedded"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class VectorMode(str, PyEnum):
    """Vector layout used when a text was embedded."""
    SINGLE = "single"
    MULTI = "multi"


class SettingType(str, PyEnum):
    """Declared type of a runtime setting value."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"


# ============================================
# Core Models
# ============================================

class Document(Base):
    """An uploaded original file.

    Immutable once stored except for its status and derived fields.
    """
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    raw_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    media_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    storage_path: Mapped[str] = mapped_column(String(1024), nullable=False)

    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus, native_enum=False, length=32, values_callable=_enum_values),
        default=DocumentStatus.UPLOADED,
        nullable=False,
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Set once text has been extracted
    text_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    # Set when status is duplicate
    canonical_document_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("documents.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), server_default=func.now()
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    processed_text = relationship("ProcessedText", back_populates="document", uselist=False)

    __table_args__ = (
        Index("ix_documents_status_created_at", "status", "created_at"),
        Index("ix_documents_text_hash", "text_hash"),
    )


class ProcessedText(Base):
    """Normalized text of a canonical document.

    `text_hash` is the content deduplication key: at most one row per
    distinct normalized text.
    """
    __tablename__ = "processed_texts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    text_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    document_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    text_length: Mapped[int] = mapped_column(Integer, nullable=False)
    language: Mapped[str] = mapped_column(String(16), default="ru")
    enrichment: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    chunk_count: Mapped[int] = mapped_column(Integer, default=0)
    processing_ms: Mapped[int] = mapped_column(Integer, default=0)
    vector_mode: Mapped[VectorMode] = mapped_column(
        Enum(VectorMode, native_enum=False, length=16, values_callable=_enum_values), default=VectorMode.SINGLE
    )
    embedded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    document = relationship("Document", back_populates="processed_text")


class SystemSetting(Base):
    """Operator-editable runtime setting (name -> typed value)."""
    __tablename__ = "system_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    value_type: Mapped[SettingType] = mapped_column(
        Enum(SettingType, native_enum=False, length=16, values_callable=_enum_values), default=SettingType.STRING
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
