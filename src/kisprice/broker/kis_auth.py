"""
KIS token issuance (``/oauth2/tokenP``).

Handles:
- Client-credentials token request for the live or paper environment
- Response validation (``access_token`` is mandatory)
- Absolute expiry computation with the safety buffer applied

KIS allows roughly one issuance per minute per app key, so nothing here
retries; callers go through ``TokenCoordinator``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import httpx
from pydantic import ValidationError

from kisprice.broker.errors import MalformedResponseError, UpstreamTokenError
from kisprice.broker.types import CachedToken, KISCredentials, KISTokenResponse, utcnow
from kisprice.config import settings
from kisprice.models.enums import KISEnvironment

logger = logging.getLogger(__name__)

# KIS reports expiry as KST wall-clock time (+9:00, no DST)
_KST = timezone(timedelta(hours=9))
_EXPIRY_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_kis_expiry(raw: str | None) -> datetime | None:
    """Parse ``"2024-01-02 09:30:00"`` (KST) into an aware UTC datetime."""
    if not raw:
        return None
    try:
        local = datetime.strptime(raw.strip().replace("T", " "), _EXPIRY_FORMAT)
    except ValueError:
        logger.warning("Unparseable KIS token expiry %r, using default lifetime", raw)
        return None
    return local.replace(tzinfo=_KST).astimezone(timezone.utc)


class KISTokenClient:
    """Issues KIS bearer tokens.

    Usage::

        client = KISTokenClient()
        token = await client.issue_token(KISEnvironment.LIVE, creds)
        await client.close()
    """

    def __init__(
        self,
        http: httpx.AsyncClient | None = None,
        safety_buffer: timedelta | None = None,
        default_lifetime: timedelta | None = None,
    ) -> None:
        self._http = http or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        if safety_buffer is None:
            safety_buffer = timedelta(seconds=settings.token_safety_buffer_seconds)
        if default_lifetime is None:
            default_lifetime = timedelta(seconds=settings.token_default_lifetime_seconds)
        self.safety_buffer = safety_buffer
        self.default_lifetime = default_lifetime

    async def issue_token(
        self, env: KISEnvironment, credentials: KISCredentials
    ) -> CachedToken:
        """Request a fresh access token.

        Returns:
            CachedToken whose ``expires_at`` already has the safety buffer
            subtracted.

        Raises:
            UpstreamTokenError: Transport failure or non-2xx status.
            MalformedResponseError: 2xx without a usable ``access_token``.
        """
        url = f"{settings.base_url_for(env)}/oauth2/tokenP"
        payload = {
            "grant_type": "client_credentials",
            "appkey": credentials.app_key,
            "appsecret": credentials.app_secret,
        }

        try:
            resp = await self._http.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error("KIS token request failed for env=%s: %s", env.value, e)
            raise UpstreamTokenError(f"KIS token request failed: {e}") from e

        if not resp.is_success:
            logger.error(
                "KIS token endpoint returned %s for env=%s", resp.status_code, env.value
            )
            raise UpstreamTokenError(
                f"KIS token failed: {resp.status_code} {resp.text}",
                status=resp.status_code,
                body=resp.text,
            )

        try:
            data = KISTokenResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise MalformedResponseError(f"KIS token response is not valid JSON: {e}") from e

        if not data.access_token:
            raise MalformedResponseError("KIS token response missing access_token")

        expiry = parse_kis_expiry(data.access_token_token_expired)
        if expiry is None:
            expiry = utcnow() + self.default_lifetime
        token = CachedToken(token=data.access_token, expires_at=expiry - self.safety_buffer)

        logger.info(
            "KIS token issued for env=%s, usable until %s",
            env.value,
            token.expires_at.isoformat(),
        )
        return token

    async def close(self) -> None:
        await self._http.aclose()
