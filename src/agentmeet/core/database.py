"""Async SQLAlchemy engine, declarative base, and session factory.

Provides:
- Base: Declarative base shared by the agents and meetings tables
- get_session(): AsyncSession generator used as the repositories' session_factory
- init_db() / close_db(): lifespan hooks for table creation and pool disposal

Tenant isolation is row-level: every agent and meeting row carries the
owning user_id and the repositories put it in every predicate.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.agentmeet.config import get_settings

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        options: dict = {"echo": False}
        if not settings.DATABASE_URL.startswith("sqlite"):
            options.update(pool_size=20, max_overflow=10, pool_pre_ping=True)
        _engine = create_async_engine(settings.DATABASE_URL, **options)
    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────

metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s",
        "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)


class Base(DeclarativeBase):
    """Base class for all persisted models."""

    metadata = metadata


# ── Session Factory ─────────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the application engine."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create tables if they don't exist (development convenience; prod uses Alembic)."""
    # Imported for their side effect of registering tables on Base.metadata
    from src.agentmeet.agents import models as _agent_models  # noqa: F401
    from src.agentmeet.meetings import models as _meeting_models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
