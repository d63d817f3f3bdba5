"""
Durable token cache: one shared row per environment in Postgres.

Function invocations are memory-isolated, so this is the tier that lets a
token issued by one instance be reused by every other. It also hosts the
refresh claim, the soft lock the coordinator uses to keep KIS token issuance
down to one caller at a time.

Each operation runs in its own short transaction and commits before
returning; no session is held across network calls to KIS.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kisprice.broker.types import CachedToken, utcnow
from kisprice.config import settings
from kisprice.db.crud import TokenCacheRepo
from kisprice.db.engine import get_session_factory
from kisprice.models.enums import KISEnvironment

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DurableTokenCache:
    """Shared token row per environment, plus the refresh-claim primitive.

    Usage::

        cache = DurableTokenCache()
        token = await cache.read(KISEnvironment.LIVE)
        if token is None and await cache.try_claim(KISEnvironment.LIVE):
            ...  # this caller is the sole refresher
            await cache.write_after_refresh(KISEnvironment.LIVE, fresh)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        claim_stale_after: timedelta | None = None,
    ) -> None:
        self._session_factory = session_factory
        if claim_stale_after is None:
            claim_stale_after = timedelta(seconds=settings.claim_stale_after_seconds)
        self.claim_stale_after = claim_stale_after

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def read(self, env: KISEnvironment) -> CachedToken | None:
        """Point lookup; ``None`` if the row is absent or has no token yet."""
        async with self._sessions()() as db:
            row = await TokenCacheRepo.read(db, env.value)
        if row is None or not row.token or row.expires_at is None:
            return None
        return CachedToken(token=row.token, expires_at=_as_utc(row.expires_at))

    async def write_after_refresh(self, env: KISEnvironment, token: CachedToken) -> None:
        """Upsert the fresh token and clear the refresh claim."""
        async with self._sessions()() as db:
            await TokenCacheRepo.upsert_token(
                db,
                env.value,
                token=token.token,
                expires_at=_as_utc(token.expires_at),
                now=utcnow(),
            )
            await db.commit()
        logger.info("Durable token cache updated for env=%s", env.value)

    async def try_claim(self, env: KISEnvironment, now: datetime | None = None) -> bool:
        """Try to become the one refresher for ``env``.

        Returns ``True`` for exactly one of any set of concurrent callers
        while the claim is free. A claim older than ``claim_stale_after`` is
        considered abandoned and can be taken over.
        """
        now = _as_utc(now or utcnow())
        async with self._sessions()() as db:
            won = await TokenCacheRepo.try_claim(
                db,
                env.value,
                now=now,
                stale_before=now - self.claim_stale_after,
            )
            await db.commit()
        logger.debug("Refresh claim for env=%s: %s", env.value, "won" if won else "held elsewhere")
        return won
