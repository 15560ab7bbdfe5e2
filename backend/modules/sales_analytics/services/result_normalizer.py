# backend/modules/sales_analytics/services/result_normalizer.py

"""
Wire-value coercion for rows returned by the database proxy.

The proxy serializes Postgres numerics as strings, sometimes with a comma
decimal separator, and occasionally wraps values in objects. Revenue, volume
and counts use the zero-fallback mode; ratios, goals and shares use the
null-preserving mode so the SQL null-guards survive the trip.
"""

import math
import re
from decimal import Decimal
from typing import Any, Mapping, Optional

_NON_NUMERIC = re.compile(r"[^0-9,.\-]")
_FLOAT_PREFIX = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")
_TRUE_STRINGS = {"t", "true", "1", "yes"}


def _parse_number(value: Any, fallback: Optional[float]) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return fallback

    if isinstance(value, (int, float, Decimal)):
        number = float(value)
        return number if math.isfinite(number) else fallback

    if isinstance(value, str):
        cleaned = _NON_NUMERIC.sub("", value).replace(",", ".", 1)
        match = _FLOAT_PREFIX.match(cleaned)
        if not match:
            return fallback
        number = float(match.group(0))
        return number if math.isfinite(number) else fallback

    if isinstance(value, Mapping):
        if "value" in value:
            return _parse_number(value["value"], fallback)
        return fallback

    return _parse_number(str(value), fallback)


def to_number(value: Any) -> float:
    """Coerce a wire value to float; absent or unparseable means 0"""
    return _parse_number(value, 0.0)


def to_number_or_none(value: Any) -> Optional[float]:
    """Coerce a wire value to float; absent or unparseable means None"""
    return _parse_number(value, None)


def to_int(value: Any) -> int:
    return int(to_number(value))


def to_flag(value: Any) -> bool:
    """Postgres booleans arrive as bools, 't'/'f' or 0/1 depending on the driver"""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_STRINGS


def to_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def to_month(value: Any) -> str:
    """Month keys are already rendered as YYYY-MM by the SQL layer"""
    return to_text(value)[:7]
