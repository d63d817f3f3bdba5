"""KRX ticker normalization."""

from __future__ import annotations

import re

_NON_DIGIT = re.compile(r"[^0-9]")

SYMBOL_WIDTH = 6


def to_six_digit_symbol(raw: str) -> str:
    """Canonicalize a free-form ticker into the 6-digit KRX code KIS expects.

    Non-digits are stripped, then the result is truncated or zero-padded::

        "5930"      -> "005930"
        "005930.KS" -> "005930"
        "0056789"   -> "005678"
        "AAPL"      -> "000000"   # no digits at all
    """
    digits = _NON_DIGIT.sub("", raw)
    if len(digits) >= SYMBOL_WIDTH:
        return digits[:SYMBOL_WIDTH]
    return digits.rjust(SYMBOL_WIDTH, "0")
