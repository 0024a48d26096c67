"""Custom exception hierarchy for pyentitlement."""

from __future__ import annotations

from typing import Any


class LicenseError(Exception):
    """Base exception for all pyentitlement errors."""

    def __init__(
        self,
        message: str = "",
        *,
        code: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.details = dict(details or {})
        super().__init__(message)


class LicenseValidationError(LicenseError):
    """Empty or malformed input (missing license key, bad JSON, missing key).

    Always fatal, never retried.
    """


class LicenseConfigError(LicenseValidationError):
    """Invalid or missing configuration."""


class LicenseSignatureError(LicenseError):
    """Cryptographic mismatch on a response or a cached record.

    Fatal for a fresh response.  On a cache read the orchestrator treats it
    as a forced cache miss and revalidates.
    """


class LicenseNetworkError(LicenseError):
    """Transport-level failure (connection, timeout, DNS, 5xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
        code: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message, code=code)


class LicenseRateLimitError(LicenseNetworkError):
    """HTTP 429 from the license API after all retries were spent."""

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        endpoint: str = "",
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message, status_code=429, endpoint=endpoint, code="RATE_LIMIT_EXCEEDED")


class LicenseApiError(LicenseError):
    """The API rejected the request (application-level error, 4xx).

    Never retried and never a reason to fall back to a grace state.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str = "",
        endpoint: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message, code=code, details=details)


class LicenseStateError(LicenseError):
    """A required capability is absent from the resolved entitlement state."""

    def __init__(self, message: str, *, capability: str, state: str) -> None:
        self.capability = capability
        self.state = state
        super().__init__(
            message,
            code="INVALID_STATE",
            details={"capability": capability, "state": state},
        )
