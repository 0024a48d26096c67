"""Cryptographic primitives for license response verification."""

from __future__ import annotations

from pyentitlement._crypto.canonical import canonicalize_json, strip_signature
from pyentitlement._crypto.hashing import context_hash, context_matches
from pyentitlement._crypto.signature import SignatureVerifier, decode_signature

__all__ = [
    "SignatureVerifier",
    "canonicalize_json",
    "context_hash",
    "context_matches",
    "decode_signature",
    "strip_signature",
]
