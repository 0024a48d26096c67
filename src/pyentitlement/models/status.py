"""Trust status and response-source enums."""

from __future__ import annotations

from enum import StrEnum

from pyentitlement.state.policy import EntitlementStatus


class ResponseSource(StrEnum):
    """Which endpoint shape an entitlement state was derived from."""

    VALIDATION = "validation"
    FEATURE = "feature"
    ACTIVATION = "activation"
    SYNTHETIC = "synthetic"


__all__ = ["EntitlementStatus", "ResponseSource"]
