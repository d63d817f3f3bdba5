"""
KIS Price Service: HTTP surface of the price broker.

Handles:
- ``POST /`` (also ``/kis-kr-price``): single or batch KRX current prices
- CORS preflight and CORS headers on every response
- Shaping every failure into a JSON ``{"error": ...}`` body
- Health check with database connectivity
"""

from __future__ import annotations

import logging

import uvicorn
from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from kisprice.broker.errors import ClientInputError, PriceBrokerError
from kisprice.config import settings
from kisprice.db.engine import check_db_health, dispose_engine
from kisprice.logging_setup import configure_logging
from kisprice.services.price.handler import PriceService, close_price_service, get_price_service

logger = logging.getLogger(__name__)

app = FastAPI(title="KIS Price Broker", version="0.1.0")

PRICE_ROUTES = ("/", "/kis-kr-price")

# ── CORS ──────────────────────────────────────────────────────────────────────


def cors_headers() -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": settings.cors_allow_origin,
        "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
        "Access-Control-Allow-Methods": "POST, OPTIONS",
    }


def json_response(data: object, status_code: int) -> JSONResponse:
    return JSONResponse(content=data, status_code=status_code, headers=cors_headers())


# ── Lifecycle ─────────────────────────────────────────────────────────────────


@app.on_event("startup")
async def _startup() -> None:
    configure_logging()
    logger.info("KIS price broker started (stage=%s)", settings.stage.value)


@app.on_event("shutdown")
async def _shutdown() -> None:
    await close_price_service()
    await dispose_engine()


# ── Error shaping ─────────────────────────────────────────────────────────────


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = "Method not allowed" if exc.status_code == 405 else str(exc.detail)
    return json_response({"error": message}, exc.status_code)


@app.exception_handler(Exception)
async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    # Errors outside the route body, e.g. while building the service dependency
    logger.error("Unhandled error in %s %s", request.method, request.url.path, exc_info=exc)
    return json_response({"error": f"kis-kr-price: {exc}"}, 502)


def _log_broker_error(exc: PriceBrokerError) -> None:
    if isinstance(exc, ClientInputError):
        logger.info("Rejected request: %s", exc.message)
    elif exc.status_code >= 500 and exc.status_code != 502:
        logger.error("Broker misconfigured: %s", exc.message)
    else:
        logger.warning("Upstream failure: %s", exc.message)


# ── Routes ────────────────────────────────────────────────────────────────────


@app.get("/health")
async def health() -> JSONResponse:
    db = await check_db_health()
    return json_response({"status": "healthy", "service": "kis-price", **db}, 200)


async def preflight() -> Response:
    return Response(status_code=204, headers=cors_headers())


async def kis_kr_price(
    request: Request,
    service: PriceService = Depends(get_price_service),
) -> JSONResponse:
    """Current price for one symbol, or a symbol→price map for a batch."""
    try:
        try:
            body = await request.json()
        except ValueError as e:
            raise ClientInputError("Invalid JSON body") from e
        return json_response(await service.handle(body), 200)
    except PriceBrokerError as e:
        _log_broker_error(e)
        return json_response({"error": e.message}, e.status_code)
    except Exception as e:
        # Last line of defence: always answer with JSON
        logger.exception("Unhandled error in price request")
        return json_response({"error": f"kis-kr-price: {e}"}, 502)


for _path in PRICE_ROUTES:
    app.add_api_route(_path, preflight, methods=["OPTIONS"], include_in_schema=False)
    app.add_api_route(_path, kis_kr_price, methods=["POST"])


if __name__ == "__main__":
    configure_logging()
    uvicorn.run("kisprice.services.price.main:app", host="0.0.0.0", port=8000)
