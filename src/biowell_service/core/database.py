"""Database initialization and session management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from biowell_service.core.config import Settings
from biowell_service.models import Base

logger = structlog.get_logger()


def create_engine(config: Settings) -> AsyncEngine:
    """Create the database engine.

    PostgreSQL gets a connection pool; an in-memory SQLite database is pinned
    to a single connection so every session sees the same tables.

    Args:
        config: Application settings

    Returns:
        Async SQLAlchemy engine
    """
    url = config.database_url
    if url.startswith("sqlite"):
        if ":memory:" in url:
            return create_async_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_async_engine(url, connect_args={"check_same_thread": False})

    return create_async_engine(
        url,
        echo=False,
        pool_size=10,
        max_overflow=20,
        pool_recycle=300,  # Recycle connections every 5 minutes
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the session factory shared by the storage layer."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_database(engine: AsyncEngine) -> None:
    """Create any missing tables.

    Args:
        engine: Engine bound to the target database
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready", tables=sorted(Base.metadata.tables))


@asynccontextmanager
async def get_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Open a session that commits on success and rolls back on error.

    Usage:
        async with get_session(factory) as session:
            session.add(record)
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def close_database(engine: AsyncEngine) -> None:
    """Close database connection pool."""
    await engine.dispose()
