"""One-way hashing for context binding."""

from __future__ import annotations

import hashlib
import hmac


def context_hash(context: str) -> str:
    """SHA-256 hex digest of a hardware id or domain.

    Parameters
    ----------
    context : str
        The identity string to bind to (hardware id or domain).

    Returns
    -------
    str
        64-character lowercase hex digest.
    """
    return hashlib.sha256(context.encode("utf-8")).hexdigest()


def context_matches(context: str, binding: str) -> bool:
    """Compare *context* against a stored binding in constant time."""
    return hmac.compare_digest(context_hash(context), binding.lower())
