"""Async database engine and session factory."""

from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from librarian.db.models import Base


class Database:
    """Owns the async engine and its session factory."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_maker = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> "Database":
        """Create a Database for the given SQLAlchemy URL."""
        kwargs = {"echo": echo}
        if not url.startswith("sqlite"):
            kwargs.update(pool_pre_ping=True, pool_size=5, max_overflow=10)
        return cls(create_async_engine(url, **kwargs))

    async def init_db(self) -> None:
        """Create tables that do not exist yet.

        Development convenience only, production schemas come from Alembic.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close_db(self) -> None:
        """Dispose of the connection pool."""
        await self.engine.dispose()

    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
