"""
Price request handling: everything between the parsed JSON body and the
response payload.

Handles:
- Request validation (single ``symbol`` or batch ``symbols``)
- Credential resolution for live / paper
- One token per request via the coordinator
- Sequential per-symbol price fetches with per-symbol degradation
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from kisprice.broker.coordinator import TokenCoordinator
from kisprice.broker.durable_cache import DurableTokenCache
from kisprice.broker.errors import ClientInputError, ConfigurationError, UpstreamQuoteError
from kisprice.broker.kis_auth import KISTokenClient
from kisprice.broker.kis_quotes import KISQuoteClient
from kisprice.broker.memory_cache import token_cache
from kisprice.broker.symbols import to_six_digit_symbol
from kisprice.broker.types import KISCredentials, PriceQuote
from kisprice.config import settings
from kisprice.models.enums import KISEnvironment

logger = logging.getLogger(__name__)


# ── Request model ────────────────────────────────────────────────────────────


class PriceRequest(BaseModel):
    symbol: str | None = None
    symbols: list[str] | None = None
    demo: bool | None = None

    model_config = {"extra": "ignore"}

    def batch_symbols(self) -> list[str]:
        """Non-blank entries of ``symbols``; empty means single mode."""
        return [s.strip() for s in self.symbols or [] if s.strip()]


def parse_request(body: Any) -> PriceRequest:
    if not isinstance(body, dict):
        raise ClientInputError("Request body must be a JSON object")
    try:
        return PriceRequest.model_validate(body)
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
        raise ClientInputError(f"Invalid field(s): {fields or 'body'}") from e


def resolve_credentials(env: KISEnvironment) -> KISCredentials:
    """Read the app key/secret for ``env`` from settings at request time."""
    if env is KISEnvironment.PAPER:
        key, secret = settings.mok_kis_app_key, settings.mok_kis_app_secret
        names = "MOK_KIS_APP_KEY / MOK_KIS_APP_SECRET"
    else:
        key, secret = settings.kis_app_key, settings.kis_app_secret
        names = "KIS_APP_KEY / KIS_APP_SECRET"
    if not key or not secret:
        raise ConfigurationError(f"{names} not set")
    return KISCredentials(app_key=key, app_secret=secret)


def as_json_number(price: float | None) -> float | int | None:
    """Render whole prices as integers (KRW has no minor unit)."""
    if price is not None and price.is_integer():
        return int(price)
    return price


# ── Service ──────────────────────────────────────────────────────────────────


class PriceService:
    """Turns a price request body into a response payload.

    Usage::

        service = PriceService(coordinator, quote_client)
        await service.handle({"symbols": ["5930", "000660"]})
        # {"prices": {"005930": 70000, "000660": 180000}}
    """

    def __init__(self, coordinator: TokenCoordinator, quote_client: KISQuoteClient) -> None:
        self.coordinator = coordinator
        self.quote_client = quote_client

    async def handle(self, body: Any) -> dict[str, Any]:
        """Process one request body.

        Raises:
            ClientInputError: Missing or malformed fields.
            ConfigurationError: No credentials for the selected environment.
            UpstreamTokenError: No token could be obtained.
            UpstreamQuoteError: Single mode and the price is unavailable.
        """
        req = parse_request(body)
        batch = req.batch_symbols()
        single = (req.symbol or "").strip()
        if not batch and not single:
            raise ClientInputError("symbol or symbols is required")

        env = KISEnvironment.from_demo_flag(bool(req.demo))
        credentials = resolve_credentials(env)

        if batch:
            quotes = await self.fetch_prices(env, credentials, batch)
            return {"prices": {q.symbol: as_json_number(q.price) for q in quotes}}

        (quote,) = await self.fetch_prices(env, credentials, [single])
        if quote.price is None:
            raise UpstreamQuoteError(f"Price unavailable for {quote.symbol}")
        return {"price": as_json_number(quote.price)}

    async def fetch_prices(
        self,
        env: KISEnvironment,
        credentials: KISCredentials,
        raw_symbols: list[str],
    ) -> list[PriceQuote]:
        """Fetch each distinct six-digit symbol once, sequentially, on one token.

        Sequential on purpose: KIS throttles per-second quote calls per app key.
        """
        symbols = list(dict.fromkeys(to_six_digit_symbol(s) for s in raw_symbols))
        token = await self.coordinator.get_token(env, credentials)

        quotes = []
        for symbol in symbols:
            price = await self.quote_client.fetch_price(token, env, credentials, symbol)
            quotes.append(PriceQuote(symbol=symbol, price=price))

        logger.info(
            "Fetched %d/%d prices (env=%s)",
            sum(q.price is not None for q in quotes),
            len(quotes),
            env.value,
        )
        return quotes

    async def close(self) -> None:
        await self.quote_client.close()


# ── Process singleton ────────────────────────────────────────────────────────

_service: PriceService | None = None


def build_price_service() -> PriceService:
    """Wire the production collaborators around one shared HTTP client."""
    http = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    coordinator = TokenCoordinator(
        memory=token_cache,
        durable=DurableTokenCache(),
        token_client=KISTokenClient(http=http),
    )
    return PriceService(coordinator, KISQuoteClient(http=http))


def get_price_service() -> PriceService:
    """FastAPI dependency; lazily builds the process-wide service."""
    global _service
    if _service is None:
        _service = build_price_service()
    return _service


async def close_price_service() -> None:
    global _service
    if _service is not None:
        await _service.close()
    _service = None
