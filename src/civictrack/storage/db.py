"""Async database engine and session factory.

One Database object is built per process at startup and handed to the
stores that need it. All consumers go through session() for connection
management.
"""

import logging

from sqlalchemy import make_url, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from civictrack.config import Settings
from civictrack.storage.models import Base

logger = logging.getLogger(__name__)


class Database:
    """Owns the async engine and the session factory."""

    def __init__(self, url: str, *, require_ssl: bool = False, echo: bool = False):
        self.url = url
        kwargs: dict = {"echo": echo}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if make_url(url).database in (None, "", ":memory:"):
                # In-memory SQLite must share a single connection across sessions
                kwargs["poolclass"] = StaticPool
        else:
            connect_args: dict = {"timeout": 10}  # 10s connection timeout for asyncpg
            if require_ssl:
                import ssl

                connect_args["ssl"] = ssl.create_default_context()
            kwargs["connect_args"] = connect_args
            kwargs["pool_pre_ping"] = True
            kwargs["pool_recycle"] = 300
        self._engine = create_async_engine(url, **kwargs)
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(settings.database_url, require_ssl=settings.database_require_ssl)

    async def init(self) -> None:
        """Create all tables if they don't exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized")

    def session(self) -> AsyncSession:
        """Get an async database session (use as an async context manager)."""
        return self._session_factory()

    async def ping(self) -> None:
        async with self.session() as session:
            await session.execute(text("SELECT 1"))

    async def dispose(self) -> None:
        await self._engine.dispose()
