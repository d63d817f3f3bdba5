"""
KIS domestic stock current-price lookup (``inquire-price``).

A bad symbol must never sink a batch. Transport errors, non-2xx statuses,
KIS business error codes and missing or nonsensical prices are all logged
and reported as ``None``.
"""

from __future__ import annotations

import logging
import math

import httpx
from pydantic import ValidationError

from kisprice.broker.errors import MalformedResponseError, UpstreamQuoteError
from kisprice.broker.types import KISCredentials, KISPriceResponse
from kisprice.config import settings
from kisprice.models.enums import KISEnvironment

logger = logging.getLogger(__name__)

_PRICE_PATH = "/uapi/domestic-stock/v1/quotations/inquire-price"


def parse_price(raw: str | None) -> float:
    """Validate a ``stck_prpr`` value.

    Raises:
        MalformedResponseError: Missing, empty, non-numeric, negative or
            non-finite value.
    """
    if raw is None or raw.strip() == "":
        raise MalformedResponseError("KIS response missing stck_prpr")
    try:
        price = float(raw)
    except ValueError as e:
        raise MalformedResponseError(f"Invalid price from KIS: {raw!r}") from e
    if not math.isfinite(price) or price < 0:
        raise MalformedResponseError(f"Invalid price from KIS: {raw!r}")
    return price


class KISQuoteClient:
    """Fetches current prices with an already-issued bearer token."""

    def __init__(self, http: httpx.AsyncClient | None = None) -> None:
        self._http = http or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    def _headers(
        self, token: str, env: KISEnvironment, credentials: KISCredentials
    ) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "appkey": credentials.app_key,
            "appsecret": credentials.app_secret,
            "tr_id": settings.tr_id_for(env),
            "custtype": "P",
            "Content-Type": "application/json",
        }

    async def _request_price(
        self,
        token: str,
        env: KISEnvironment,
        credentials: KISCredentials,
        symbol: str,
    ) -> float:
        url = f"{settings.base_url_for(env)}{_PRICE_PATH}"
        params = {
            "FID_COND_MRKT_DIV_CODE": settings.kis_market_code,
            "FID_INPUT_ISCD": symbol,
        }
        try:
            resp = await self._http.get(
                url, params=params, headers=self._headers(token, env, credentials)
            )
        except httpx.HTTPError as e:
            raise UpstreamQuoteError(f"KIS price request failed: {e}") from e

        if not resp.is_success:
            raise UpstreamQuoteError(f"KIS price failed: {resp.status_code} {resp.text}")

        try:
            data = KISPriceResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise MalformedResponseError(f"KIS price response is not valid JSON: {e}") from e

        if data.rt_cd != "0":
            msg = (data.output.msg1 if data.output else None) or data.msg1 or data.rt_cd
            raise UpstreamQuoteError(msg or "Unknown KIS error")

        return parse_price(data.output.stck_prpr if data.output else None)

    async def fetch_price(
        self,
        token: str,
        env: KISEnvironment,
        credentials: KISCredentials,
        symbol: str,
    ) -> float | None:
        """Current price for a six-digit symbol, or ``None`` if unavailable."""
        try:
            return await self._request_price(token, env, credentials, symbol)
        except (UpstreamQuoteError, MalformedResponseError) as e:
            logger.warning("Price unavailable for %s (env=%s): %s", symbol, env.value, e)
            return None

    async def close(self) -> None:
        await self._http.aclose()
