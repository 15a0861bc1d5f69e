"""Shared helpers for the upstream client.

Safe conversions for the numeric fields of CoinGecko payloads and the small
parsing utilities used when building requests and reading responses.
"""

from __future__ import annotations

import datetime
import email.utils
from collections.abc import Iterable
from decimal import Decimal, InvalidOperation
from typing import Final

# ---------------------------------------------------------------------------
# Shared constants
# ---------------------------------------------------------------------------

COINGECKO_SOURCE: Final[str] = "coingecko"

_NON_FINITE: Final[frozenset[str]] = frozenset({"nan", "inf", "-inf", "infinity", "-infinity"})


# ---------------------------------------------------------------------------
# Safe type conversions
# ---------------------------------------------------------------------------


def safe_decimal(value: object) -> Decimal | None:
    """Convert a numeric value to Decimal via string to preserve precision.

    Returns None for None, booleans, NaN/inf and unparseable values, so a
    missing upstream number stays distinguishable from zero.
    """
    if value is None or isinstance(value, bool):
        return None
    str_val = str(value).strip()
    if not str_val or str_val.lower() in _NON_FINITE:
        return None
    try:
        result = Decimal(str_val)
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def normalize_coin_ids(coin_ids: Iterable[str]) -> list[str]:
    """Lowercase, strip, deduplicate and sort coin ids."""
    return sorted({c.strip().lower() for c in coin_ids if c.strip()})


def parse_retry_after(header: str | None) -> float | None:
    """Parse a ``Retry-After`` header given as seconds or an HTTP date.

    Returns None when the header is absent or unusable.
    """
    if header is None or not header.strip():
        return None
    raw = header.strip()
    try:
        seconds = float(raw)
    except ValueError:
        try:
            when = email.utils.parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=datetime.UTC)
        seconds = (when - datetime.datetime.now(datetime.UTC)).total_seconds()
    return seconds if seconds > 0 else None
