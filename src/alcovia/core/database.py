"""
Database connection management using SQLAlchemy async.

The engine and sessionmaker are process-scoped: created once by ``init_db``
at application startup and disposed by ``close_db`` at shutdown.

Example:
    await init_db(settings.DATABASE_URL)

    async with get_sessionmaker()() as session:
        result = await session.execute(select(Student))
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from alcovia.core.exceptions import StorageError
from alcovia.core.models import Base

logger = logging.getLogger(__name__)

# Module-level state for the process-wide connection pool
_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None


def create_engine_for(url: str, *, pool_size: int = 20, echo: bool = False) -> AsyncEngine:
    """Create an async engine with pool settings appropriate to the backend."""
    if url.startswith("postgresql"):
        return create_async_engine(
            url,
            pool_size=pool_size,
            max_overflow=pool_size,
            pool_pre_ping=True,
            pool_recycle=1800,
            pool_timeout=2,
            echo=echo,
        )
    return create_async_engine(url, echo=echo)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(url: str, *, pool_size: int = 20, echo: bool = False) -> AsyncEngine:
    """Initialize the connection pool.

    Args:
        url: Async database URL
        pool_size: Connections kept open (PostgreSQL only)
        echo: Log SQL statements

    Returns:
        The created engine

    Raises:
        StorageError: If the engine cannot be created
    """
    global _engine, _sessionmaker

    try:
        _engine = create_engine_for(url, pool_size=pool_size, echo=echo)
        _sessionmaker = build_sessionmaker(_engine)
    except SQLAlchemyError as e:
        raise StorageError("Failed to initialize database connection", e) from e

    return _engine


async def create_tables(engine: AsyncEngine | None = None) -> None:
    """Create any missing tables (CREATE TABLE IF NOT EXISTS semantics)."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema verified")


async def ping(engine: AsyncEngine | None = None) -> None:
    """Run a trivial query; raises if the database is unreachable."""
    engine = engine or get_engine()
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def close_db() -> None:
    """Dispose of the connection pool."""
    global _engine, _sessionmaker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _sessionmaker = None


def get_engine() -> AsyncEngine:
    """Return the process engine.

    Raises:
        StorageError: If ``init_db`` has not been called
    """
    if _engine is None:
        raise StorageError("Database not initialized. Call init_db() first.")
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Return the process sessionmaker.

    Raises:
        StorageError: If ``init_db`` has not been called
    """
    if _sessionmaker is None:
        raise StorageError("Database not initialized. Call init_db() first.")
    return _sessionmaker


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session.

    Commits when the request handler returns, rolls back if it raises.
    """
    async with get_sessionmaker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
