"""
Token refresh coordinator.

Returns a usable KIS bearer token for an environment while keeping token
issuance to (at most) one caller at a time across every running instance.

Order of attempts:

1. In-process cache.
2. Durable cache (shared Postgres row).
3. Refresh claim. The winner re-reads the durable row, then calls KIS only
   if it is still empty or expiring, and publishes the token to the row,
   which also releases the claim. Losers poll the durable row a bounded
   number of times.
4. Direct issuance, once polling is exhausted (the claimant is presumed
   dead or stuck).

The claim is a soft lock. If a claimant crashes mid-refresh, nobody clears
it; it simply goes stale after ``claim_stale_after`` and the next caller
takes over. Rare double issuance in that window is accepted in exchange for
not needing a transactional lock service.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError

from kisprice.broker.durable_cache import DurableTokenCache
from kisprice.broker.kis_auth import KISTokenClient
from kisprice.broker.memory_cache import InProcessTokenCache
from kisprice.broker.types import CachedToken, KISCredentials
from kisprice.config import settings
from kisprice.models.enums import KISEnvironment

logger = logging.getLogger(__name__)

# Datastore failures that should degrade to direct issuance, not fail the request
_STORE_ERRORS = (SQLAlchemyError, OSError)


class TokenCoordinator:
    """Hands out bearer tokens, coordinating refreshes across instances.

    Usage::

        coordinator = TokenCoordinator(memory, durable, token_client)
        token = await coordinator.get_token(KISEnvironment.LIVE, creds)
    """

    def __init__(
        self,
        memory: InProcessTokenCache,
        durable: DurableTokenCache,
        token_client: KISTokenClient,
        *,
        safety_buffer: timedelta | None = None,
        poll_interval: float | None = None,
        poll_attempts: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._memory = memory
        self._durable = durable
        self._token_client = token_client
        if safety_buffer is None:
            safety_buffer = timedelta(seconds=settings.token_safety_buffer_seconds)
        self.safety_buffer = safety_buffer
        self.poll_interval = (
            settings.claim_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self.poll_attempts = (
            settings.claim_poll_attempts if poll_attempts is None else poll_attempts
        )
        self._sleep = sleep
        # One acquisition per environment per process; other requests wait on it
        self._locks: dict[KISEnvironment, asyncio.Lock] = {}

    def _usable(self, token: CachedToken | None) -> bool:
        return token is not None and token.is_valid(self.safety_buffer)

    def _lock_for(self, env: KISEnvironment) -> asyncio.Lock:
        lock = self._locks.get(env)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[env] = lock
        return lock

    async def get_token(self, env: KISEnvironment, credentials: KISCredentials) -> str:
        """Return a valid bearer token for ``env``.

        Raises:
            UpstreamTokenError: KIS refused or could not be reached.
            MalformedResponseError: KIS answered without a token.
        """
        cached = self._memory.get(env)
        if self._usable(cached):
            return cached.token

        async with self._lock_for(env):
            # Another request in this process may have finished while we waited
            cached = self._memory.get(env)
            if self._usable(cached):
                return cached.token

            token = await self._acquire(env, credentials)
            self._memory.set(env, token)
            return token.token

    async def _acquire(self, env: KISEnvironment, credentials: KISCredentials) -> CachedToken:
        try:
            shared = await self._durable.read(env)
        except _STORE_ERRORS as e:
            logger.error("Durable token cache unreadable for env=%s: %s", env.value, e)
            return await self._issue_directly(env, credentials)

        if self._usable(shared):
            logger.debug("Reusing shared token for env=%s", env.value)
            return shared

        try:
            claimed = await self._durable.try_claim(env)
        except _STORE_ERRORS as e:
            logger.error("Refresh claim failed for env=%s: %s", env.value, e)
            return await self._issue_directly(env, credentials)

        if claimed:
            return await self._refresh_as_claimant(env, credentials)

        polled = await self._poll_for_token(env)
        if polled is not None:
            return polled

        logger.warning(
            "No token from the current refresher for env=%s after %d polls; issuing directly",
            env.value,
            self.poll_attempts,
        )
        return await self._issue_directly(env, credentials)

    async def _refresh_as_claimant(
        self, env: KISEnvironment, credentials: KISCredentials
    ) -> CachedToken:
        # A peer may have published (and released its claim) between our read and our claim
        try:
            shared = await self._durable.read(env)
        except _STORE_ERRORS as e:
            logger.warning("Re-read after claim failed for env=%s: %s", env.value, e)
            shared = None
        if self._usable(shared):
            logger.info("Token for env=%s landed before refresh; releasing claim", env.value)
            await self._publish(env, shared)
            return shared

        logger.info("Refresh claim won for env=%s, requesting KIS token", env.value)
        # On failure the claim stays set and expires via the staleness window
        token = await self._token_client.issue_token(env, credentials)
        await self._publish(env, token)
        return token

    async def _publish(self, env: KISEnvironment, token: CachedToken) -> None:
        """Write ``token`` to the durable row, which also clears the claim."""
        try:
            await self._durable.write_after_refresh(env, token)
        except _STORE_ERRORS as e:
            logger.error(
                "Could not publish token for env=%s (claim will go stale): %s", env.value, e
            )

    async def _poll_for_token(self, env: KISEnvironment) -> CachedToken | None:
        """Wait for the claimant's token to land in the durable row."""
        for attempt in range(1, self.poll_attempts + 1):
            await self._sleep(self.poll_interval)
            try:
                shared = await self._durable.read(env)
            except _STORE_ERRORS as e:
                logger.warning(
                    "Poll %d/%d for env=%s failed: %s", attempt, self.poll_attempts, env.value, e
                )
                continue
            if self._usable(shared):
                logger.info("Got shared token for env=%s on poll %d", env.value, attempt)
                return shared
        return None

    async def _issue_directly(
        self, env: KISEnvironment, credentials: KISCredentials
    ) -> CachedToken:
        # Last resort: no claim taken, durable row untouched
        return await self._token_client.issue_token(env, credentials)
