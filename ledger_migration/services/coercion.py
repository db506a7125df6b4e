"""Value coercion helpers shared by the mapper and the entity strategies."""

import math
from datetime import date, datetime
from typing import Any, Dict, Optional

from dateutil import parser as date_parser


def is_blank(value: Any) -> bool:
    """True for values the mapper treats as missing (None or empty string)."""
    return value is None or value == ""


def to_float(value: Any) -> float:
    """Coerce to float; anything unparsable, NaN or infinite becomes 0.0."""
    if value is None or isinstance(value, bool):
        return float(value or 0)
    try:
        result = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(result) or math.isinf(result):
        return 0.0
    return result


def to_int(value: Any) -> int:
    """Coerce to int, truncating decimals; failure becomes 0."""
    if isinstance(value, int):
        return int(value)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return int(to_float(value))


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def to_date_string(value: Any) -> Optional[str]:
    """Normalize a date-like value to ``YYYY-MM-DD``; unparsable values become None."""
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date_parser.parse(str(value)).date().isoformat()
    except (ValueError, OverflowError, TypeError):
        return None


def format_address(address: Any) -> Optional[str]:
    """
    Format a QBO-style address object as multi-line text.

    Lines 1-4, then "City, Region, PostalCode", then Country; empty parts
    are dropped. Returns None when nothing is left.
    """
    if isinstance(address, str):
        return address.strip() or None
    if not isinstance(address, dict):
        return None

    locality = ", ".join(
        str(part) for part in (
            address.get("City"),
            address.get("CountrySubDivisionCode"),
            address.get("PostalCode"),
        ) if part
    )
    parts = [
        address.get("Line1"),
        address.get("Line2"),
        address.get("Line3"),
        address.get("Line4"),
        locality,
        address.get("Country"),
    ]
    lines = [str(part) for part in parts if part]
    return "\n".join(lines) if lines else None


def money(data: Dict[str, Any], key: str) -> float:
    """Read a money field from a raw record with float coercion."""
    return round(to_float(data.get(key)), 2)
