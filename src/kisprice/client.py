"""
Caller-side price client.

Resolves ``{symbol, market}`` holdings into a ``"MARKET:symbol" -> price``
map for portfolio valuation. KR symbols go to the KIS price broker in one
batch request; US symbols go to Alpha Vantage ``GLOBAL_QUOTE`` one at a time.
Nothing here raises: any failure shows up as ``None`` for the affected
symbols.

Usage::

    prices = await get_current_prices([
        Holding("005930", StockMarket.KR),
        Holding("AAPL", StockMarket.US),
    ])
    prices["KR:005930"]  # 70000 or None
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import httpx

from kisprice.broker.symbols import to_six_digit_symbol
from kisprice.config import settings
from kisprice.models.enums import StockMarket

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Holding:
    symbol: str
    market: StockMarket | str


def price_key(market: StockMarket | str, symbol: str) -> str:
    """Composite cache key, e.g. ``"KR:005930"``."""
    market = market.value if isinstance(market, StockMarket) else market
    return f"{market}:{symbol}"


def _market_of(item: Holding) -> StockMarket | None:
    try:
        return StockMarket(item.market)
    except ValueError:
        return None


def _clean_price(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        price = float(value)
    except ValueError:
        return None
    return price if math.isfinite(price) and price >= 0 else None


def _broker_headers() -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {settings.price_broker_anon_key}",
    }


async def _kr_prices(http: httpx.AsyncClient, items: list[Holding]) -> dict[str, float | None]:
    result: dict[str, float | None] = {price_key(i.market, i.symbol): None for i in items}
    try:
        resp = await http.post(
            settings.price_broker_url,
            json={"symbols": [i.symbol.strip() for i in items]},
            headers=_broker_headers(),
        )
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error("kis-kr-price: request failed or returned invalid JSON: %s", e)
        return result

    if not resp.is_success or not isinstance(data, dict):
        msg = data.get("error") if isinstance(data, dict) else None
        logger.error("kis-kr-price: %s", msg or f"HTTP {resp.status_code}")
        return result

    prices = data.get("prices")
    if not isinstance(prices, dict):
        return result
    for item in items:
        six = to_six_digit_symbol(item.symbol)
        result[price_key(item.market, item.symbol)] = _clean_price(prices.get(six))
    return result


async def _us_price(http: httpx.AsyncClient, symbol: str) -> float | None:
    api_key = settings.alpha_vantage_api_key.strip()
    if not api_key:
        return None
    params = {"function": "GLOBAL_QUOTE", "symbol": symbol.strip(), "apikey": api_key}
    try:
        resp = await http.get(settings.alpha_vantage_base_url, params=params)
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Alpha Vantage quote failed for %s: %s", symbol, e)
        return None
    quote = data.get("Global Quote") if isinstance(data, dict) else None
    if not isinstance(quote, dict):
        return None
    raw = quote.get("05. price")
    if raw is None or raw == "":
        return None
    return _clean_price(raw)


async def get_current_prices(
    items: Iterable[Holding],
    http: httpx.AsyncClient | None = None,
) -> dict[str, float | None]:
    """Current prices keyed by :func:`price_key`; ``None`` when unavailable."""
    items = list(items)
    own_client = http is None
    http = http or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    try:
        result: dict[str, float | None] = {}
        kr_items = [i for i in items if _market_of(i) is StockMarket.KR]
        if kr_items:
            result.update(await _kr_prices(http, kr_items))
        for item in items:
            market = _market_of(item)
            if market is StockMarket.US:
                result[price_key(item.market, item.symbol)] = await _us_price(http, item.symbol)
            elif market is None:
                logger.warning("No price source for market %r (%s)", item.market, item.symbol)
                result[price_key(item.market, item.symbol)] = None
        return result
    finally:
        if own_client:
            await http.aclose()


async def get_current_price(
    symbol: str,
    market: StockMarket | str,
    http: httpx.AsyncClient | None = None,
) -> float | None:
    prices = await get_current_prices([Holding(symbol, market)], http=http)
    return prices.get(price_key(market, symbol))
