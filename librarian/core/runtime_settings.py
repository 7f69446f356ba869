"""Runtime settings snapshot.

Operators tune the pipeline through the `system_settings` table. Each
operation reads a fresh, validated `RuntimeSettings` snapshot through a
`SettingsProvider`; invalid values are dropped one by one and replaced with
defaults, and an unreachable store yields the defaults as a whole.
"""

import json
import logging
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from librarian.db.models import SettingType
from librarian.db.repository import SettingsRepository

logger = logging.getLogger(__name__)

MetadataStrategy = Literal["auto", "sampled", "hierarchical"]
MetadataDomain = Literal["general", "nutrition", "spiritual"]


class RuntimeSettings(BaseModel):
    """Validated, immutable snapshot of pipeline tunables."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    # Chunking
    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    preserve_structure: bool = True

    # Retrieval
    retrieval_k: int = Field(default=5, gt=0, le=100)
    score_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    content_weight: float = Field(default=0.8, ge=0.0)
    meta_weight: float = Field(default=0.2, ge=0.0)

    # Embeddings
    embedding_batch_size: int = Field(default=5, gt=0, le=2048)
    embedding_batch_delay: float = Field(default=0.5, ge=0.0)
    multivector_enabled: bool = False

    # Metadata enrichment
    enhanced_metadata_enabled: bool = True
    metadata_strategy: MetadataStrategy = "auto"
    metadata_max_context_tokens: int = Field(default=120000, gt=0)
    metadata_domain: MetadataDomain = "general"
    metadata_model: str = "gpt-4o-mini"
    metadata_prompt: str | None = None

    # Answer generation
    chat_model: str = "gpt-4o"
    temperature: float = Field(default=0.4, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4000, gt=0, le=128000)
    system_prompt: str = (
        "You are a professional nutritionist's assistant. Help the user find well-founded, "
        "useful answers about health, nutrition, vitamins, minerals, supplements and lifestyle."
    )

    # Ingestion
    language: str = "ru"
    max_file_size_mb: int = Field(default=100, gt=0)

    @model_validator(mode="after")
    def _check_overlap(self) -> "RuntimeSettings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


class SettingsProvider(Protocol):
    """Source of raw runtime setting values."""

    async def load(self) -> dict[str, Any]:
        """Return raw setting values keyed by name."""
        ...


class StaticSettingsProvider:
    """Provider backed by an in-memory mapping."""

    def __init__(self, values: dict[str, Any] | None = None):
        self.values = dict(values or {})

    async def load(self) -> dict[str, Any]:
        return dict(self.values)


class DatabaseSettingsProvider:
    """Provider backed by the `system_settings` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def load(self) -> dict[str, Any]:
        async with self.session_maker() as session:
            rows = await SettingsRepository(session).get_all()

        values: dict[str, Any] = {}
        for row in rows:
            try:
                values[row.name] = coerce_setting(row.value, row.value_type)
            except (TypeError, ValueError) as e:
                logger.warning(f"[Settings] Ignoring unparsable setting '{row.name}': {e}")
        return values


def coerce_setting(raw: str, value_type: SettingType | str) -> Any:
    """Convert a stored string value to its declared type."""
    value_type = SettingType(value_type)
    if value_type is SettingType.NUMBER:
        number = float(raw)
        return int(number) if number.is_integer() else number
    if value_type is SettingType.BOOLEAN:
        return raw.strip().lower() in ("true", "1", "yes", "on")
    if value_type is SettingType.JSON:
        return json.loads(raw)
    return raw


async def load_runtime_settings(provider: SettingsProvider | None) -> RuntimeSettings:
    """Read and validate a fresh settings snapshot.

    Args:
        provider: Source of raw values; None means defaults only

    Returns:
        A valid RuntimeSettings, never raises
    """
    if provider is None:
        return RuntimeSettings()

    try:
        raw = await provider.load()
    except Exception as e:
        logger.warning(f"[Settings] Settings store unavailable, using defaults: {e}")
        return RuntimeSettings()

    known = {k: v for k, v in raw.items() if k in RuntimeSettings.model_fields}

    # Drop offending keys until the rest validates
    while True:
        try:
            return RuntimeSettings.model_validate(known)
        except ValidationError as e:
            bad_keys = {err["loc"][0] for err in e.errors() if err["loc"] and err["loc"][0] in known}
            if not bad_keys:
                logger.warning(f"[Settings] Inconsistent settings, using defaults: {e}")
                return RuntimeSettings()
            for key in bad_keys:
                logger.warning(f"[Settings] Invalid value for '{key}' ({known[key]!r}), using default")
                known.pop(key)
