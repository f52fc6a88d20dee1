"""Odds parsing helpers.

Entries carry the current price either as a decimal number (``3.5``) or as
a traditional fractional string (``"5/2"``, ``"EVS"``).
"""

import re
from decimal import Decimal, InvalidOperation

_FRACTION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*/\s*(\d+(?:\.\d+)?)\s*$")
_EVENS = {"evs", "evens", "ev", "even"}


def parse_decimal_odds(value: object) -> Decimal | None:
    """
    Parse a price into decimal odds.

    Returns None for missing, unparseable or non-positive prices.

    Examples:
        "5/2" -> 3.5, "EVS" -> 2.0, 4 -> 4.0
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        try:
            odds = Decimal(str(value))
        except InvalidOperation:
            return None
        return odds if odds.is_finite() and odds > 0 else None

    text = str(value).strip()
    if not text:
        return None
    if text.lower() in _EVENS:
        return Decimal("2")

    fraction = _FRACTION_PATTERN.match(text)
    if fraction:
        numerator, denominator = Decimal(fraction.group(1)), Decimal(fraction.group(2))
        if denominator == 0:
            return None
        return numerator / denominator + 1

    try:
        odds = Decimal(text)
    except InvalidOperation:
        return None
    return odds if odds.is_finite() and odds > 0 else None
