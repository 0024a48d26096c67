from __future__ import annotations

from pathlib import Path

import pytest

from pyentitlement._constants import BASE_URL
from pyentitlement.config import LicenseConfig
from pyentitlement.exceptions import LicenseConfigError, LicenseValidationError


def test_defaults() -> None:
    config = LicenseConfig(api_key="sk_test")

    assert config.base_url == BASE_URL
    assert config.cache_enabled is True
    assert config.retry_attempts == 3
    assert config.cache_ttl == config.revalidation_interval + 72 * 3600
    assert config.should_verify_signatures is False


@pytest.mark.parametrize("api_key", ["", "   "])
def test_api_key_required(api_key: str) -> None:
    with pytest.raises(LicenseConfigError) as exc_info:
        LicenseConfig(api_key=api_key)

    assert exc_info.value.code == "INVALID_API_KEY"
    assert isinstance(exc_info.value, LicenseValidationError)


@pytest.mark.parametrize(
    "overrides",
    [{"cache_ttl": -1}, {"retry_attempts": 0}, {"timeout": 0}],
)
def test_invalid_numbers_rejected(overrides: dict[str, float]) -> None:
    with pytest.raises(LicenseConfigError):
        LicenseConfig(api_key="sk_test", **overrides)


def test_public_key_file_is_loaded(tmp_path: Path, public_key_pem: str) -> None:
    key_file = tmp_path / "public.pem"
    key_file.write_text(public_key_pem + "\n", encoding="utf-8")

    config = LicenseConfig(api_key="sk_test", public_key_file=str(key_file))

    assert config.public_key == public_key_pem.strip()
    assert config.should_verify_signatures is True


def test_missing_public_key_file(tmp_path: Path) -> None:
    with pytest.raises(LicenseConfigError, match="not found"):
        LicenseConfig(api_key="sk_test", public_key_file=str(tmp_path / "missing.pem"))


def test_verification_can_be_disabled(public_key_pem: str) -> None:
    config = LicenseConfig(api_key="sk_test", public_key=public_key_pem, verify_signatures=False)

    assert config.should_verify_signatures is False


def test_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LICENSE_API_KEY", "sk_env")
    monkeypatch.setenv("LICENSE_BASE_URL", "https://licenses.example")
    monkeypatch.setenv("LICENSE_CACHE_TTL", "60")
    monkeypatch.setenv("LICENSE_RETRY_ATTEMPTS", "5")
    monkeypatch.setenv("LICENSE_CACHE_ENABLED", "no")
    monkeypatch.setenv("LICENSE_ENVIRONMENT", "staging")

    config = LicenseConfig.from_env(product_id="app")

    assert config.api_key == "sk_env"
    assert config.base_url == "https://licenses.example"
    assert config.cache_ttl == 60.0
    assert config.retry_attempts == 5
    assert config.cache_enabled is False
    assert config.environment == "staging"
    assert config.product_id == "app"


def test_from_env_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LICENSE_API_KEY", "sk_env")
    monkeypatch.setenv("LICENSE_TIMEOUT", "5")

    config = LicenseConfig.from_env(api_key="sk_explicit", timeout=12.0)

    assert config.api_key == "sk_explicit"
    assert config.timeout == 12.0


def test_from_env_rejects_non_numeric(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LICENSE_API_KEY", "sk_env")
    monkeypatch.setenv("LICENSE_TIMEOUT", "soon")

    with pytest.raises(LicenseConfigError, match="LICENSE_TIMEOUT"):
        LicenseConfig.from_env()


def test_from_env_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LICENSE_API_KEY", raising=False)

    with pytest.raises(LicenseConfigError):
        LicenseConfig.from_env()


def test_cache_ttl_follows_revalidation_interval() -> None:
    assert LicenseConfig(api_key="sk_test", revalidation_interval=3600).cache_ttl == 3600 + 72 * 3600
    assert LicenseConfig(api_key="sk_test", cache_ttl=60).cache_ttl == 60


def test_from_env_explicit_public_key_beats_env_key_file(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, public_key_pem: str, other_public_key_pem: str
) -> None:
    key_file = tmp_path / "env.pem"
    key_file.write_text(other_public_key_pem, encoding="utf-8")
    monkeypatch.setenv("LICENSE_API_KEY", "sk_env")
    monkeypatch.setenv("LICENSE_PUBLIC_KEY_FILE", str(key_file))

    explicit = LicenseConfig.from_env(public_key=public_key_pem)
    from_file = LicenseConfig.from_env()

    assert explicit.public_key == public_key_pem
    assert explicit.public_key_file is None
    assert from_file.public_key == other_public_key_pem.strip()
