"""
Error taxonomy for the price broker.

Every error carries the HTTP status the request handler should answer with,
so the outer boundary can shape any of them into ``{"error": message}``.
"""

from __future__ import annotations


class PriceBrokerError(Exception):
    """Base class for all broker errors."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ClientInputError(PriceBrokerError):
    """Malformed JSON or missing required fields."""

    status_code = 400


class ConfigurationError(PriceBrokerError):
    """Credentials for the selected environment are not configured."""

    status_code = 500


class UpstreamTokenError(PriceBrokerError):
    """The KIS token endpoint failed or could not be reached."""

    status_code = 502

    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class UpstreamQuoteError(PriceBrokerError):
    """A per-symbol quote call failed. Folded to ``None`` by the quote client."""

    status_code = 502


class MalformedResponseError(PriceBrokerError):
    """KIS answered 2xx but with a body of unexpected shape."""

    status_code = 502
