"""Application configuration using Pydantic Settings.

Process-level configuration is loaded from environment variables (or `.env`).
Tunables that operators change at runtime (chunk size, retrieval weights,
enrichment strategy ...) live in the settings table instead, see
`librarian.core.runtime_settings`.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # ============================================
    # Application
    # ============================================
    app_name: str = "Librarian"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_prefix: str = "/api/v1"
    allowed_origins: list[str] = ["http://localhost:3000"]

    # ============================================
    # Database (PostgreSQL)
    # ============================================
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_db: str = "librarian"

    # Explicit DATABASE_URL takes precedence if set
    database_url: str | None = None
    database_echo: bool = False

    @property
    def get_database_url(self) -> str:
        """Get database URL - explicit or constructed from components."""
        if self.database_url:
            return self.database_url
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # ============================================
    # Redis (rate limiter persistence)
    # ============================================
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_auth: str = ""

    @property
    def redis_url(self) -> str:
        """Construct Redis URL, with auth when configured."""
        if self.redis_auth:
            return f"redis://:{self.redis_auth}@{self.redis_host}:{self.redis_port}/0"
        return f"redis://{self.redis_host}:{self.redis_port}/0"

    rate_limit_flush_interval: float = 5.0  # seconds between best-effort flushes

    # ============================================
    # Qdrant (Vector Database)
    # ============================================
    qdrant_url: str = "http://localhost:6333"
    qdrant_collection: str = "documents"
    qdrant_api_key: str | None = None
    qdrant_timeout: int = 60

    # ============================================
    # OpenAI
    # ============================================
    openai_api_key: str = ""
    openai_base_url: str | None = None
    openai_timeout: float = 120.0
    openai_connect_timeout: float = 30.0

    # ============================================
    # Embeddings
    # ============================================
    embedding_model: str = Field(
        default="text-embedding-3-large", description="OpenAI embedding model name"
    )
    embedding_dimensions: int = Field(
        default=3072, description="Embedding vector dimensions (must match model)"
    )
    embedding_cache_size: int = 100
    embedding_min_interval: float = 0.2  # seconds between single requests

    # ============================================
    # Storage
    # ============================================
    storage_root: Path = Path("uploads")

    # ============================================
    # Logging
    # ============================================
    log_level: str = "INFO"
    log_format: str = "console"  # "json" or "console"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
