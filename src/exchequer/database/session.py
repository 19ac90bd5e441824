"""Database engine and session management."""

import logging
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from . import models

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./exchequer.db"


def get_database_url(database_url: Optional[str] = None) -> str:
    """
    Resolve the database URL, falling back to a local SQLite file.
    Plain postgres URLs are rewritten to use the asyncpg driver.
    """
    db_url = database_url
    if db_url:
        # Convert postgresql:// to postgresql+asyncpg://
        if db_url.startswith("postgresql://"):
            db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        # Convert postgres:// to postgresql+asyncpg://
        elif db_url.startswith("postgres://"):
            db_url = db_url.replace("postgres://", "postgresql+asyncpg://", 1)
        return db_url
    return DEFAULT_DATABASE_URL


def _is_memory_sqlite(url: str) -> bool:
    # sqlite+aiosqlite:// with no path is also an in-memory database
    return ":memory:" in url or "mode=memory" in url or url.rstrip("/").endswith("sqlite+aiosqlite:")


def create_async_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """Engine for the record store.

    An in-memory SQLite database exists only on its connection, so all
    sessions share one. File databases get a connection per session;
    sharing one there would let one session's commit publish another's
    uncommitted writes.
    """
    url = get_database_url(database_url)

    if _is_memory_sqlite(url):
        return sa_create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    if url.startswith("sqlite"):
        return sa_create_async_engine(url, echo=echo)

    return sa_create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
    )


def get_async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


class DatabaseManager:
    """
    Owns the engine and session factory for one application instance.

    Example:
        db_manager = DatabaseManager()
        await db_manager.initialize()

        async with db_manager.session() as session:
            store = RecordStore(session)

        await db_manager.shutdown()
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        self.database_url = get_database_url(database_url)
        self.echo = echo
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def initialized(self) -> bool:
        return self._engine is not None

    async def initialize(self, create_tables: bool = True) -> None:
        """Initialize the database connection and optionally create tables."""
        if self._engine is not None:
            return
        logger.info("Initializing database connection...")
        self._engine = create_async_engine(
            self.database_url,
            self.echo,
            self.pool_size,
            self.max_overflow,
        )
        self._session_factory = get_async_session_factory(self._engine)

        if create_tables:
            async with self._engine.begin() as conn:
                await conn.run_sync(models.Base.metadata.create_all)
                logger.info("Database tables created successfully.")

        logger.info("Database initialized successfully.")

    async def shutdown(self) -> None:
        """Shutdown the database connection."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connection closed.")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on success and rolls back on error."""
        if self._session_factory is None:
            raise RuntimeError(
                "DatabaseManager not initialized. Call initialize() first."
            )

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()
