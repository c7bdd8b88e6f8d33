"""Async SQLAlchemy engine and session factory for the orchestration store.

Provides:
- OrchestrationBase: Declarative base for orchestration tables
- get_session(): AsyncSession generator used as the repository session_factory
- init_db() / close_db(): engine lifecycle helpers
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from sqlalchemy import MetaData, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.orchestrator.config import get_settings

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            echo=False,
        )
    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────

orchestration_metadata = MetaData(schema=get_settings().DATABASE_SCHEMA)


class OrchestrationBase(DeclarativeBase):
    """Base class for orchestration tables (sessions, relationships, messages)."""

    metadata = orchestration_metadata


# ── Session Factory ─────────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the orchestration engine."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create the orchestration schema and tables if they don't exist.

    Intended for development and tests; production schemas are managed
    outside this package.
    """
    engine = get_engine()
    schema = get_settings().DATABASE_SCHEMA
    async with engine.begin() as conn:
        await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))
        await conn.run_sync(OrchestrationBase.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
