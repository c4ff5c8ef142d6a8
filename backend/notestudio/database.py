"""
NoteStudio Backend — Database Session Management
==================================================

What:  Async SQLAlchemy engine, session factory and declarative base.
How:   One engine per process with connection pooling; sessions are opened
       per unit of work (SqlProjectStore opens one per store operation, which
       also covers writes made by generation tasks outside any request).
Who:   SqlProjectStore, the health route and Alembic.

Connection Pooling Strategy:
    pool_size / max_overflow come from settings for server databases.
    SQLite URLs (local runs, tests) skip the pool arguments because the
    aiosqlite dialect manages its own pool.
"""

from typing import Any, Dict

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from notestudio.config import settings


def _engine_options(database_url: str) -> Dict[str, Any]:
    """Pool options for server databases; SQLite gets none."""
    options: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if database_url.startswith("sqlite"):
        return options
    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_recycle=3600,  # Recycle after 1 hour to prevent stale connections
    )
    return options


# ── Engine Configuration ──────────────────────────────────────────────────
engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: rows stay readable after commit, which the store
# relies on when it converts ORM rows into schema objects.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Shares one metadata object so Alembic autogenerate sees every table.
    """
    pass


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def create_tables() -> None:
    """
    Creates missing tables directly from the ORM metadata.

    Used for SQLite development databases and tests; server databases are
    managed with Alembic (`alembic upgrade head`).
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Closes all pooled connections. Called from the lifespan on shutdown."""
    await engine.dispose()
