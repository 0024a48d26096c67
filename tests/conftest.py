from __future__ import annotations

import base64
from collections.abc import Callable
from typing import Any

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from pyentitlement._crypto.canonical import canonicalize_json

NOW = 1_767_225_600.0  # 2026-01-01T00:00:00Z
DAY = 86400.0


class FakeClock:
    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _public_pem(private_key: rsa.RSAPrivateKey) -> str:
    return (
        private_key.public_key()
        .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
        .decode("ascii")
    )


@pytest.fixture(scope="session")
def private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=4096)


@pytest.fixture(scope="session")
def public_key_pem(private_key: rsa.RSAPrivateKey) -> str:
    return _public_pem(private_key)


@pytest.fixture(scope="session")
def other_public_key_pem() -> str:
    return _public_pem(rsa.generate_private_key(public_exponent=65537, key_size=2048))


@pytest.fixture(scope="session")
def weak_public_key_pem() -> str:
    return _public_pem(rsa.generate_private_key(public_exponent=65537, key_size=1024))


def sign_text(private_key: rsa.RSAPrivateKey, text: str) -> str:
    raw = private_key.sign(text.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(raw).decode("ascii")


@pytest.fixture(scope="session")
def sign(private_key: rsa.RSAPrivateKey) -> Callable[[dict[str, Any]], dict[str, Any]]:
    """Return a signer that attaches ``signature`` over the canonical document."""

    def _sign(document: dict[str, Any]) -> dict[str, Any]:
        body = {k: v for k, v in document.items() if k != "signature"}
        return {**body, "signature": sign_text(private_key, canonicalize_json(body))}

    return _sign


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def validation_body(
    *,
    valid: bool = True,
    status: str = "active",
    expires_in_days: float | None = 30.0,
    features: dict[str, Any] | None = None,
    hardware_id: str | None = None,
    wrapped: bool = True,
    now: float = NOW,
) -> dict[str, Any]:
    license_data: dict[str, Any] = {
        "status": status,
        "features": features if features is not None else {"sso": True, "seats": 25},
        "activations_limit": 5,
        "activations_count": 2,
    }
    if expires_in_days is not None:
        license_data["expires_at"] = now + expires_in_days * DAY
    if hardware_id is not None:
        license_data["hardware_id"] = hardware_id
    if wrapped:
        return {"data": {"valid": valid, "license": license_data}, "timestamp": now}
    return {"valid": valid, "license": license_data, "timestamp": now}
