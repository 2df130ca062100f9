"""Async engine and session factory.

SQLite (aiosqlite) is the default backend; PostgreSQL (asyncpg) gets a
connection pool.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

# Database URL from environment
DATABASE_URL = os.getenv("STOCKTALLY_DATABASE_URL", "sqlite+aiosqlite:///stocktally.db")
DB_ECHO = os.getenv("STOCKTALLY_DB_ECHO", "0") == "1"


def create_engine(url: Optional[str] = None, *, echo: bool = DB_ECHO) -> AsyncEngine:
    """Create an async engine for ``url`` (defaults to ``STOCKTALLY_DATABASE_URL``)."""

    url = url or DATABASE_URL
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        pool_size=10,  # Keep 10 connections in pool
        max_overflow=20,  # Allow 20 additional connections
        pool_pre_ping=True,  # Verify connections before using
        pool_recycle=3600,  # Recycle connections after 1 hour
        echo=echo,
    )


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@asynccontextmanager
async def session_scope(sessions: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Transactional scope: commit on success, roll back on any error.

    Usage:
        async with session_scope(sessions) as session:
            session.add(item)
    """
    session = sessions()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    from stocktally.db.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all(engine: AsyncEngine) -> None:
    """Drop all tables (for testing only)."""
    from stocktally.db.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
