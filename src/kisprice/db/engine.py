"""
Async SQLAlchemy engine and session factory.

The engine is created lazily on first use to avoid import-time side effects
(e.g. when running tests that don't need a real DB connection).

Usage::

    from kisprice.db import get_session_factory

    async with get_session_factory()() as session:
        row = await TokenCacheRepo.read(session, KISEnvironment.LIVE)
"""

from __future__ import annotations

import logging
import time

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from kisprice.config import settings
from kisprice.models.enums import Stage

logger = logging.getLogger(__name__)

# ── Lazy engine creation ─────────────────────────────────────────────────────

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_async_url(url: str | None = None) -> str:
    """Convert postgresql:// → postgresql+asyncpg://"""
    url = url or settings.postgres_url
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def get_engine() -> AsyncEngine:
    """Return the async engine, creating it on first call.

    Function instances are short-lived and numerous, so the pool is kept
    small; the shared Postgres should not be exhausted by idle connections.
    """
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            get_async_url(),
            echo=settings.stage is Stage.DEVELOPMENT and settings.log_level.upper() == "DEBUG",
            pool_size=2,
            max_overflow=3,
            pool_pre_ping=True,
            pool_recycle=1800,  # Recycle connections every 30 min
        )
        logger.info("Database engine created: pool_size=2, max_overflow=3")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory, creating it on first call."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def dispose_engine() -> None:
    """Close pooled connections (app shutdown)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_factory = None


# ── Health check ─────────────────────────────────────────────────────────────


async def check_db_health(engine: AsyncEngine | None = None) -> dict:
    """Quick DB connectivity check for /health endpoints.

    Returns::

        {"database": "healthy", "latency_ms": 2}
        {"database": "unhealthy", "error": "connection refused"}
    """
    try:
        eng = engine or get_engine()
        start = time.monotonic()
        async with eng.connect() as conn:
            await conn.execute(text("SELECT 1"))
        latency = round((time.monotonic() - start) * 1000, 1)
        return {"database": "healthy", "latency_ms": latency}
    except Exception as exc:
        logger.error("Database health check failed: %s", exc)
        return {"database": "unhealthy", "error": str(exc)}
