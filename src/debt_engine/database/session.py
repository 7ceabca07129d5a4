"""Engines and sessions for the debt engine database.

The web application owns one process-wide engine (``init_db``/``close_db``,
sessions via ``get_db``). Background jobs run on their own threads and
event loops, so each run opens a private ``DatabaseManager`` instead.
"""

import os
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

from ..config import get_settings
from . import models

logger = logging.getLogger(__name__)

# Engine served to request handlers
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """
    Resolve the database URL.

    ``DEBT_ENGINE_DATABASE_URL`` wins over the conventional ``DATABASE_URL``;
    plain postgres URLs are rewritten to the asyncpg driver.
    """
    db_url = get_settings().database_url or os.getenv("DATABASE_URL")
    if db_url:
        if db_url.startswith("postgresql://"):
            db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif db_url.startswith("postgres://"):
            db_url = db_url.replace("postgres://", "postgresql+asyncpg://", 1)
        return db_url
    return "sqlite+aiosqlite:///./debt_engine.db"


def create_async_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """
    Create an async engine for the debt engine database.

    Args:
        database_url: Connection URL; resolved with get_database_url() if None.
        echo: Log every SQL statement.
        pool_size: Pooled connections for server databases.
        max_overflow: Extra connections allowed beyond pool_size.

    Returns:
        AsyncEngine instance.
    """
    url = database_url or get_database_url()

    # One shared connection for SQLite so in-memory databases survive
    if "sqlite" in url:
        return sa_create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return sa_create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
    )


def _make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create every table defined in the models if missing."""
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)


def get_async_session_factory(
    engine: Optional[AsyncEngine] = None,
) -> async_sessionmaker[AsyncSession]:
    """
    Return a session factory.

    Args:
        engine: Engine to bind a new factory to. Without one, the factory of
            the application engine opened by init_db() is returned.

    Raises:
        RuntimeError: If no engine is given and init_db() has not run.
    """
    if engine is not None:
        return _make_session_factory(engine)

    if _session_factory is None:
        raise RuntimeError("Application database is not open; call init_db() first")
    return _session_factory


async def init_db(
    database_url: Optional[str] = None,
    echo: bool = False,
    create: bool = True,
) -> None:
    """
    Open the application engine.

    Args:
        database_url: Connection URL; resolved with get_database_url() if None.
        echo: Log every SQL statement.
        create: Create missing tables.
    """
    global _engine, _session_factory

    _engine = create_async_engine(database_url, echo=echo)
    _session_factory = _make_session_factory(_engine)
    if create:
        await create_tables(_engine)
    logger.info(f"Application database opened ({_engine.url.get_backend_name()})")


async def close_db() -> None:
    """Dispose of the application engine, if open."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Application database closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a session on the application engine.

    The session commits when the request handler returns and rolls back if
    it raises.
    """
    session_factory = get_async_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


class DatabaseManager:
    """
    An engine with an explicit lifetime, for work outside the web app.

    Example:
        manager = DatabaseManager(url)
        await manager.initialize()
        async with manager.session() as session:
            ...
        await manager.shutdown()
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        self.database_url = database_url
        self.echo = echo
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    async def initialize(self, create: bool = True) -> None:
        """Open the engine and optionally create missing tables."""
        self._engine = create_async_engine(
            self.database_url,
            self.echo,
            self.pool_size,
            self.max_overflow,
        )
        self._session_factory = _make_session_factory(self._engine)

        if create:
            await create_tables(self._engine)

    async def shutdown(self) -> None:
        """Dispose of the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on success and rolls back on error."""
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager is not initialized; call initialize() first")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
