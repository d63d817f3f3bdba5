"""Core enums used throughout the price broker."""

from __future__ import annotations

from enum import Enum


class Stage(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class KISEnvironment(str, Enum):
    """KIS credential/endpoint pair. Tokens never cross environments."""

    LIVE = "live"
    PAPER = "paper"

    @classmethod
    def from_demo_flag(cls, demo: bool) -> KISEnvironment:
        return cls.PAPER if demo else cls.LIVE


class StockMarket(str, Enum):
    KR = "KR"
    US = "US"
