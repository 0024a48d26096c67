"""Redaction for debug logs.

License traffic carries secrets (API keys, signatures) and identity data
(hardware ids, domains).  Secrets are dropped entirely; license keys keep
their last four characters so log lines can still be correlated.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_DROPPED_KEYS: frozenset[str] = frozenset(
    {
        "api_key",
        "apikey",
        "authorization",
        "signature",
        "hardware_id",
        "domain",
        "idempotency-key",
    }
)

_MASKED_KEYS: frozenset[str] = frozenset({"license_key", "licensekey"})

_VISIBLE_TAIL = 4


def mask_license_key(license_key: str) -> str:
    """``"ABCD-EFGH-IJKL"`` -> ``"****IJKL"``; short keys are fully masked."""
    if len(license_key) <= _VISIBLE_TAIL:
        return "*" * len(license_key)
    return "****" + license_key[-_VISIBLE_TAIL:]


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a copy of *value* with sensitive fields removed or masked."""
    if _depth > 20:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}...<truncated>"

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for raw_key, item in value.items():
            key = str(raw_key)
            lowered = key.lower()
            if lowered in _DROPPED_KEYS:
                out[key] = "<redacted>"
            elif lowered in _MASKED_KEYS and isinstance(item, str):
                out[key] = mask_license_key(item)
            else:
                out[key] = redact_for_log(item, max_string=max_string, _depth=_depth + 1)
        return out

    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]

    return repr(value)
