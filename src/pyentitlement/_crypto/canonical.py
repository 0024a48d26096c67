"""Canonical JSON serialization for signature verification.

Signer and verifier build their JSON documents independently, so both sides
must agree on one byte representation:

* object keys sorted recursively, array order preserved
* no insignificant whitespace
* non-ASCII characters emitted as-is (UTF-8), not ``\\u`` escaped
* integral floats written without a fractional part (``1.0`` -> ``1``),
  matching JavaScript number formatting used by the signing service
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any


def _sort_keys_recursive(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(key): _sort_keys_recursive(value[key]) for key in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [_sort_keys_recursive(item) for item in value]
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def canonicalize_json(value: Any) -> str:
    """Serialize *value* to canonical JSON text.

    Two structurally equal values produce byte-identical output regardless
    of the order in which their keys were inserted.
    """
    return json.dumps(
        _sort_keys_recursive(value),
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def strip_signature(document: Mapping[str, Any], field: str = "signature") -> tuple[dict[str, Any], Any]:
    """Return a shallow copy of *document* without *field*, plus the removed value."""
    remainder = dict(document)
    signature = remainder.pop(field, None)
    return remainder, signature
