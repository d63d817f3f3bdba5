"""Broker package: KIS token coordination and price lookups."""

from kisprice.broker.coordinator import TokenCoordinator  # noqa: F401
from kisprice.broker.durable_cache import DurableTokenCache  # noqa: F401
from kisprice.broker.kis_auth import KISTokenClient  # noqa: F401
from kisprice.broker.kis_quotes import KISQuoteClient  # noqa: F401
from kisprice.broker.memory_cache import InProcessTokenCache  # noqa: F401
from kisprice.broker.symbols import to_six_digit_symbol  # noqa: F401
from kisprice.broker.types import CachedToken, KISCredentials, PriceQuote  # noqa: F401
