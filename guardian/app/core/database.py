"""
Database layer — async SQLAlchemy 2.0 (asyncpg in production, aiosqlite in tests).

Provides:
    • Engine and session factory construction from settings or a URL
    • Base model for ORM entities
    • Table creation / disposal helpers

Nothing here holds a module-level connection: the application builds one
engine at startup and hands the session factory to the stores that need it.

Usage:
    from guardian.app.core.database import create_engine, create_session_factory

    engine = create_engine()
    sessions = create_session_factory(engine)
    store = SqlHazardStore(sessions)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from guardian.app.core.config import settings

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


# ── Engine ──
def create_engine(url: Optional[str] = None, *, echo: Optional[bool] = None) -> AsyncEngine:
    """
    Build an async engine.

    SQLite URLs (tests, local runs) get a StaticPool so an in-memory database
    is shared by every session; other URLs use the configured pool sizes.
    """
    url = url or settings.DATABASE_URL
    kwargs: Dict[str, Any] = {
        "echo": settings.DATABASE_ECHO if echo is None else echo,
    }
    if url.startswith("sqlite"):
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
    return create_async_engine(url, **kwargs)


# ── Session Factory ──
def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ── Lifecycle ──
async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (dev/test only — use migrations in production)."""
    # Import for side effect: registers the ORM tables on Base.metadata
    from guardian.app.hazards import tables  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def close_db(engine: AsyncEngine) -> None:
    """Dispose engine connections."""
    await engine.dispose()
    logger.info("Database connections closed")
