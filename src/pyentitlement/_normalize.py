"""Normalization helpers.

Centralizes defensive parsing of the loosely typed values the license API
sends (ISO strings, epoch seconds, epoch milliseconds, numeric strings).
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None:
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def normalize_timestamp_seconds(value: Any) -> float | None:
    """Normalize an API timestamp to epoch seconds.

    - Empty/missing -> None
    - ISO-8601 strings (``Z`` suffix allowed, naive values read as UTC)
    - Milliseconds (> 1e11) -> seconds
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        moment = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return moment.timestamp()
    numeric = safe_float(value)
    if numeric is not None:
        if numeric > 1e11:
            numeric /= 1000.0
        return numeric
    if not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.timestamp()
