"""
Repository for the durable KIS token cache.

Every write is a single statement. The claim in particular must never be a
read-then-write from Python: the database decides which concurrent caller
wins.

Usage::

    from kisprice.db.crud import TokenCacheRepo

    async with session_factory() as db:
        won = await TokenCacheRepo.try_claim(db, "live", now=now, stale_before=cutoff)
        await db.commit()
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from kisprice.db.models import KISTokenCacheRow


def _insert_for(db: AsyncSession):
    """Dialect-specific INSERT supporting ``ON CONFLICT``."""
    if db.bind is not None and db.bind.dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert


class TokenCacheRepo:
    """CRUD for the ``kis_token_cache`` table."""

    @staticmethod
    async def read(db: AsyncSession, environment: str) -> KISTokenCacheRow | None:
        result = await db.execute(
            select(KISTokenCacheRow).where(KISTokenCacheRow.environment == environment)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert_token(
        db: AsyncSession,
        environment: str,
        *,
        token: str,
        expires_at: datetime,
        now: datetime,
    ) -> None:
        """Insert or replace the environment's token and release any claim."""
        insert = _insert_for(db)
        stmt = insert(KISTokenCacheRow).values(
            environment=environment,
            token=token,
            expires_at=expires_at,
            refresh_claim_started_at=None,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[KISTokenCacheRow.environment],
            set_={
                "token": stmt.excluded.token,
                "expires_at": stmt.excluded.expires_at,
                "refresh_claim_started_at": None,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await db.execute(stmt)

    @staticmethod
    async def try_claim(
        db: AsyncSession,
        environment: str,
        *,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        """Atomically mark a refresh as in progress.

        Inserts the row if the environment has never been seen; otherwise
        sets the claim only when it is free (null) or older than
        ``stale_before``. Exactly one concurrent caller sees a row affected.
        """
        insert = _insert_for(db)
        claim = KISTokenCacheRow.refresh_claim_started_at
        stmt = insert(KISTokenCacheRow).values(
            environment=environment,
            refresh_claim_started_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[KISTokenCacheRow.environment],
            set_={"refresh_claim_started_at": now, "updated_at": now},
            where=or_(claim.is_(None), claim < stale_before),
        )
        result = await db.execute(stmt)
        return result.rowcount == 1
