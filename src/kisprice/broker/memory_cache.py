"""
In-process token cache.

Holds the last known bearer token per environment for the lifetime of the
process. Read before the durable cache and written after any successful
acquisition, whichever tier produced the token.
"""

from __future__ import annotations

from kisprice.broker.types import CachedToken
from kisprice.models.enums import KISEnvironment


class InProcessTokenCache:
    """Per-environment token slots; the process exiting is the only teardown."""

    def __init__(self) -> None:
        self._slots: dict[KISEnvironment, CachedToken] = {}

    def get(self, env: KISEnvironment) -> CachedToken | None:
        return self._slots.get(env)

    def set(self, env: KISEnvironment, token: CachedToken) -> None:
        self._slots[env] = token

    def clear(self, env: KISEnvironment | None = None) -> None:
        if env is None:
            self._slots.clear()
        else:
            self._slots.pop(env, None)


# Process-wide instance
token_cache = InProcessTokenCache()
