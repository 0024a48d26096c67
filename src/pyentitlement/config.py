"""Client configuration for pyentitlement."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any

from pyentitlement._constants import BASE_URL, DEFAULT_REVALIDATION_INTERVAL, REVALIDATION_GRACE_SECONDS
from pyentitlement.exceptions import LicenseConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class LicenseConfig:
    """Client configuration.

    Parameters
    ----------
    api_key : str
        API key sent as a bearer token.
    base_url : str
        License API base URL.
    timeout : float
        Per-attempt request timeout in seconds.
    verify_signatures : bool
        Verify response signatures when a public key is available.
    public_key : str or None
        RSA public key (PEM).  Overwritten by the contents of
        *public_key_file* when that is set.
    public_key_file : str or None
        Path to a PEM public key file.  Relative paths resolve against the
        current working directory.
    environment : str or None
        Environment identifier attached to every entitlement state.
    product_id : str or None
        Product identifier attached to every entitlement state.
    cache_enabled : bool
        Keep verified entitlement states in the in-process store.
    cache_ttl : float or None
        Seconds a cached state lives before it is evicted.  Defaults to
        *revalidation_interval* plus the 72 h revalidation grace window, so a
        stale snapshot stays available for offline grace.
    revalidation_interval : float
        Seconds after the last verification at which a cached state is
        considered stale and revalidated against the API.
    retry_attempts : int
        Maximum attempts per request for transport faults and 429s.
    retry_delay : float
        Base backoff in seconds; attempt *n* waits ``retry_delay * n``.
    """

    api_key: str
    base_url: str = BASE_URL
    timeout: float = 30.0
    verify_signatures: bool = True
    public_key: str | None = None
    public_key_file: str | None = None
    environment: str | None = None
    product_id: str | None = None
    cache_enabled: bool = True
    cache_ttl: float | None = None
    revalidation_interval: float = DEFAULT_REVALIDATION_INTERVAL
    retry_attempts: int = 3
    retry_delay: float = 1.0

    def __post_init__(self) -> None:
        if not isinstance(self.api_key, str) or not self.api_key.strip():
            raise LicenseConfigError("API key is required", code="INVALID_API_KEY")
        if self.cache_ttl is None:
            object.__setattr__(self, "cache_ttl", self.revalidation_interval + REVALIDATION_GRACE_SECONDS)
        if self.cache_ttl < 0:
            raise LicenseConfigError(f"cache_ttl must be >= 0, got {self.cache_ttl}")
        if self.retry_attempts < 1:
            raise LicenseConfigError(f"retry_attempts must be >= 1, got {self.retry_attempts}")
        if self.timeout <= 0:
            raise LicenseConfigError(f"timeout must be > 0, got {self.timeout}")
        if self.public_key_file:
            object.__setattr__(self, "public_key", self._read_public_key_file(self.public_key_file))

    @staticmethod
    def _read_public_key_file(path_text: str) -> str:
        path = Path(path_text).expanduser()
        if not path.is_file():
            raise LicenseConfigError(f"Public key file not found: {path_text}")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise LicenseConfigError(f"Cannot read public key file: {path_text} - {exc}") from exc

    @property
    def should_verify_signatures(self) -> bool:
        return self.verify_signatures and bool(self.public_key)

    @classmethod
    def from_env(cls, **overrides: Any) -> LicenseConfig:
        """Create configuration from ``LICENSE_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "LICENSE_API_KEY": "api_key",
            "LICENSE_BASE_URL": "base_url",
            "LICENSE_PUBLIC_KEY": "public_key",
            "LICENSE_PUBLIC_KEY_FILE": "public_key_file",
            "LICENSE_ENVIRONMENT": "environment",
            "LICENSE_PRODUCT_ID": "product_id",
        }
        _ENV_FLOAT_MAP = {
            "LICENSE_TIMEOUT": "timeout",
            "LICENSE_CACHE_TTL": "cache_ttl",
            "LICENSE_REVALIDATION_INTERVAL": "revalidation_interval",
            "LICENSE_RETRY_DELAY": "retry_delay",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                try:
                    config_kwargs[field_name] = float(val)
                except ValueError as exc:
                    raise LicenseConfigError(f"{env_key} must be numeric, got {val!r}") from exc

        attempts_env = env.get("LICENSE_RETRY_ATTEMPTS")
        if attempts_env is not None and "retry_attempts" not in overrides:
            try:
                config_kwargs["retry_attempts"] = int(attempts_env)
            except ValueError as exc:
                raise LicenseConfigError(f"LICENSE_RETRY_ATTEMPTS must be an integer, got {attempts_env!r}") from exc

        if "verify_signatures" not in overrides:
            config_kwargs["verify_signatures"] = _env_bool(env.get("LICENSE_VERIFY_SIGNATURES"), True)
        if "cache_enabled" not in overrides:
            config_kwargs["cache_enabled"] = _env_bool(env.get("LICENSE_CACHE_ENABLED"), True)

        # An explicit key must not be replaced by the contents of an env key file.
        if "public_key" in overrides and "public_key_file" not in overrides:
            config_kwargs.pop("public_key_file", None)

        config_kwargs.update(overrides)
        if "api_key" not in config_kwargs:
            raise LicenseConfigError("API key is required (set LICENSE_API_KEY)", code="INVALID_API_KEY")

        return cls(**config_kwargs)
