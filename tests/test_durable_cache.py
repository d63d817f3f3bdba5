"""
Tests for the durable token cache and its refresh-claim primitive.

Uses a file-backed SQLite database (see conftest) so concurrent claims run on
separate connections, the same way separate function instances would.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from kisprice.broker.durable_cache import DurableTokenCache
from kisprice.broker.types import CachedToken
from kisprice.db.engine import check_db_health
from kisprice.db.models import KISTokenCacheRow
from kisprice.models.enums import KISEnvironment

LIVE = KISEnvironment.LIVE
PAPER = KISEnvironment.PAPER
T0 = datetime(2026, 10, 18, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def cache(session_factory):
    return DurableTokenCache(session_factory, claim_stale_after=timedelta(seconds=90))


async def _row(session_factory, env: KISEnvironment) -> KISTokenCacheRow | None:
    async with session_factory() as db:
        result = await db.execute(
            select(KISTokenCacheRow).where(KISTokenCacheRow.environment == env.value)
        )
        return result.scalar_one_or_none()


# ── Read / write ─────────────────────────────────────────────────────────────


class TestReadWrite:
    @pytest.mark.asyncio
    async def test_read_missing_row(self, cache):
        assert await cache.read(LIVE) is None

    @pytest.mark.asyncio
    async def test_write_then_read(self, cache):
        expires = datetime(2099, 1, 1, tzinfo=timezone.utc)
        await cache.write_after_refresh(LIVE, CachedToken("T1", expires))

        token = await cache.read(LIVE)
        assert token.token == "T1"
        assert token.expires_at == expires
        assert token.expires_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_write_is_an_upsert(self, cache, session_factory):
        await cache.write_after_refresh(LIVE, CachedToken("OLD", T0))
        await cache.write_after_refresh(LIVE, CachedToken("NEW", T0 + timedelta(hours=1)))

        async with session_factory() as db:
            rows = (await db.execute(select(KISTokenCacheRow))).scalars().all()
        assert len(rows) == 1
        assert rows[0].token == "NEW"

    @pytest.mark.asyncio
    async def test_environments_are_separate_rows(self, cache):
        await cache.write_after_refresh(LIVE, CachedToken("LIVE", T0))
        assert await cache.read(PAPER) is None

    @pytest.mark.asyncio
    async def test_claimed_row_without_token_reads_as_absent(self, cache):
        assert await cache.try_claim(LIVE, now=T0) is True
        assert await cache.read(LIVE) is None


# ── Claim ────────────────────────────────────────────────────────────────────


class TestClaim:
    @pytest.mark.asyncio
    async def test_first_claim_on_unseen_environment(self, cache, session_factory):
        assert await cache.try_claim(LIVE, now=T0) is True
        row = await _row(session_factory, LIVE)
        assert row.refresh_claim_started_at.replace(tzinfo=timezone.utc) == T0

    @pytest.mark.asyncio
    async def test_second_claim_fails_while_fresh(self, cache):
        assert await cache.try_claim(LIVE, now=T0) is True
        assert await cache.try_claim(LIVE, now=T0 + timedelta(seconds=30)) is False

    @pytest.mark.asyncio
    async def test_stale_claim_can_be_taken_over(self, cache):
        assert await cache.try_claim(LIVE, now=T0) is True
        assert await cache.try_claim(LIVE, now=T0 + timedelta(seconds=91)) is True

    @pytest.mark.asyncio
    async def test_write_releases_claim(self, cache, session_factory):
        assert await cache.try_claim(LIVE, now=T0) is True
        await cache.write_after_refresh(LIVE, CachedToken("T1", T0 + timedelta(hours=23)))

        row = await _row(session_factory, LIVE)
        assert row.refresh_claim_started_at is None
        assert await cache.try_claim(LIVE, now=T0 + timedelta(seconds=1)) is True

    @pytest.mark.asyncio
    async def test_claim_keeps_existing_token(self, cache):
        await cache.write_after_refresh(LIVE, CachedToken("T1", T0))
        assert await cache.try_claim(LIVE, now=T0) is True
        assert (await cache.read(LIVE)).token == "T1"

    @pytest.mark.asyncio
    async def test_zero_stale_window_is_kept(self, session_factory):
        cache = DurableTokenCache(session_factory, claim_stale_after=timedelta(0))
        assert await cache.try_claim(LIVE, now=T0) is True
        assert await cache.try_claim(LIVE, now=T0 + timedelta(seconds=1)) is True

    @pytest.mark.asyncio
    async def test_claims_are_per_environment(self, cache):
        assert await cache.try_claim(LIVE, now=T0) is True
        assert await cache.try_claim(PAPER, now=T0) is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("prepopulated", [False, True])
    async def test_exactly_one_concurrent_claim_wins(self, cache, prepopulated):
        if prepopulated:
            await cache.write_after_refresh(LIVE, CachedToken("EXPIRED", T0 - timedelta(days=1)))

        results = await asyncio.gather(*(cache.try_claim(LIVE) for _ in range(10)))

        assert results.count(True) == 1
        assert results.count(False) == 9


# ── Health ───────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_db_health(async_engine):
    health = await check_db_health(async_engine)
    assert health["database"] == "healthy"
    assert "latency_ms" in health
