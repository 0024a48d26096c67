"""RSA-SHA256 signature verification for license API responses.

The library only ever verifies.  Signatures are produced by the license
service with an RSA private key (PKCS#1 v1.5 padding, SHA-256 digest) over
the canonical JSON of the response minus its ``signature`` field.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from pyentitlement._constants import EXPECTED_RSA_KEY_BITS, MIN_RSA_KEY_BITS
from pyentitlement._crypto.canonical import canonicalize_json, strip_signature
from pyentitlement.exceptions import LicenseSignatureError, LicenseValidationError

_logger = logging.getLogger(__name__)


def _load_public_key(key_data: str | bytes) -> Any:
    raw = key_data.encode("utf-8") if isinstance(key_data, str) else bytes(key_data)
    if b"-----BEGIN" in raw:
        return serialization.load_pem_public_key(raw.strip())
    return serialization.load_der_public_key(raw)


def decode_signature(signature: str) -> bytes:
    """Decode a base64 signature, rejecting anything that is not strict base64."""
    if not signature:
        raise LicenseValidationError("Signature cannot be empty", code="SIGNATURE_MISSING")
    try:
        return base64.b64decode(signature.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise LicenseValidationError("Invalid base64 signature", code="SIGNATURE_MISSING") from exc


class SignatureVerifier:
    """Verify RSA-SHA256 signatures with a configured public key.

    Parameters
    ----------
    public_key : str or bytes
        PEM text or DER bytes of an RSA public key of at least 2048 bits.

    Raises
    ------
    LicenseSignatureError
        If the key is empty, malformed, not RSA, or too short.
    """

    def __init__(self, public_key: str | bytes) -> None:
        if not public_key or (isinstance(public_key, str) and not public_key.strip()):
            raise LicenseSignatureError("Public key cannot be empty", code="INVALID_PUBLIC_KEY")
        try:
            key = _load_public_key(public_key)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise LicenseSignatureError(f"Invalid public key format: {exc}", code="INVALID_PUBLIC_KEY") from exc

        if not isinstance(key, RSAPublicKey):
            raise LicenseSignatureError("Key must be RSA type", code="INVALID_PUBLIC_KEY")
        if key.key_size < MIN_RSA_KEY_BITS:
            raise LicenseSignatureError(
                f"Key size must be at least {MIN_RSA_KEY_BITS} bits (got {key.key_size})",
                code="INVALID_PUBLIC_KEY",
            )
        if key.key_size < EXPECTED_RSA_KEY_BITS:
            _logger.warning(
                "Public key is %d bits; %d bits expected",
                key.key_size,
                EXPECTED_RSA_KEY_BITS,
            )
        self._key: RSAPublicKey = key

    @property
    def key_size(self) -> int:
        return self._key.key_size

    def get_key_info(self) -> dict[str, Any]:
        return {"type": "rsa", "size": self._key.key_size}

    def verify(self, data: str | bytes, signature: str) -> bool:
        """Check *signature* (base64) over *data*.

        Returns ``False`` for a well-formed signature that does not match.
        Raises :class:`LicenseValidationError` for empty data, an empty
        signature or a signature that is not valid base64.
        """
        if not data:
            raise LicenseValidationError("Data cannot be empty")
        binary_signature = decode_signature(signature)
        message = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        try:
            self._key.verify(binary_signature, message, padding.PKCS1v15(), hashes.SHA256())
        except InvalidSignature:
            return False
        return True

    def canonicalize_json(self, value: Any) -> str:
        return canonicalize_json(value)

    def verify_document(self, document: dict[str, Any]) -> bool:
        """Verify a parsed document carrying its own ``signature`` field."""
        remainder, signature = strip_signature(document)
        if not signature or not isinstance(signature, str):
            raise LicenseValidationError("Response does not contain signature field", code="SIGNATURE_MISSING")
        try:
            canonical = canonicalize_json(remainder)
        except (TypeError, ValueError) as exc:
            raise LicenseValidationError(f"Document is not representable as canonical JSON: {exc}") from exc
        return self.verify(canonical, signature)

    def verify_json_response(self, json_response: str | bytes) -> bool:
        """Parse *json_response*, pull out ``signature`` and verify the rest."""
        try:
            document = json.loads(json_response)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as exc:
            raise LicenseValidationError(f"Invalid JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise LicenseValidationError("Invalid JSON: expected an object")
        return self.verify_document(document)
