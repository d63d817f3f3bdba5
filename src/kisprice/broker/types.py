"""Broker data types: cached tokens, credentials, and KIS wire shapes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, ConfigDict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class KISCredentials:
    """App key/secret pair for one environment."""

    app_key: str
    app_secret: str

    def __repr__(self) -> str:
        return "KISCredentials(app_key=***, app_secret=***)"


@dataclass(frozen=True, slots=True)
class CachedToken:
    """Bearer token with its absolute (UTC) expiry."""

    token: str
    expires_at: datetime

    def is_valid(self, buffer: timedelta, now: datetime | None = None) -> bool:
        """A token is usable only if it outlives ``now + buffer``."""
        now = now or utcnow()
        return now + buffer < self.expires_at

    def __repr__(self) -> str:
        return f"CachedToken(token=***, expires_at={self.expires_at.isoformat()})"


@dataclass(slots=True)
class PriceQuote:
    """One symbol's price; ``None`` means unavailable."""

    symbol: str
    price: float | None


# ── KIS wire shapes ──────────────────────────────────────────────────────────
# Every field is optional: KIS omits fields freely, and the clients turn an
# absent required field into a named error instead of passing None along.


class _KISModel(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class KISTokenResponse(_KISModel):
    access_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None
    access_token_token_expired: str | None = None


class KISPriceOutput(_KISModel):
    stck_prpr: str | None = None  # current price
    msg1: str | None = None


class KISPriceResponse(_KISModel):
    rt_cd: str | None = None  # "0" on success
    msg_cd: str | None = None
    msg1: str | None = None
    output: KISPriceOutput | None = None
