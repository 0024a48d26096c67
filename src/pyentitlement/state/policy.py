"""Deterministic entitlement policy.

Pure functions from a normalized payload (plus the current time) to a trust
status and a capability set.  This module does no response parsing; the
normalizers in :mod:`pyentitlement.models.responses` produce the payload.

Normalized payload keys::

    valid, status, features, license, metadata, valid_from, valid_until,
    context_binding, product_id, environment, issued_at,
    revalidation_failed, last_verified_at
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pyentitlement._constants import (
    DOWNLOADABLE_STATUSES,
    EXPIRY_GRACE_SECONDS,
    INVALID_STATUSES,
    NO_UPDATE_STATUSES,
    REVALIDATION_GRACE_SECONDS,
)

_logger = logging.getLogger(__name__)


class EntitlementStatus(StrEnum):
    ACTIVE = "ACTIVE"
    GRACE = "GRACE"
    RESTRICTED = "RESTRICTED"
    INVALID = "INVALID"


def _lower(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value.lower()
    return None


def _nested_license(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    license_data = payload.get("license")
    return license_data if isinstance(license_data, Mapping) else {}


def effective_status(payload: Mapping[str, Any]) -> str | None:
    """Lower-cased license status, preferring the top-level field."""
    return _lower(payload.get("status")) or _lower(_nested_license(payload).get("status"))


def determine_state(payload: Mapping[str, Any], now: float) -> EntitlementStatus:
    """Classify a normalized payload.

    Evaluated in order; the first matching rule wins:

    1. status revoked/suspended/cancelled -> INVALID
    2. ``now < valid_from`` -> RESTRICTED
    3. ``now > valid_until`` -> GRACE within 7 days, RESTRICTED after
    4. ``valid is True`` -> ACTIVE
    5. ``revalidation_failed`` and last verification < 72 h ago -> GRACE
    6. otherwise -> ACTIVE (fail-open)
    """
    if effective_status(payload) in INVALID_STATUSES:
        return EntitlementStatus.INVALID

    valid_from = payload.get("valid_from")
    if valid_from is not None and now < valid_from:
        return EntitlementStatus.RESTRICTED

    valid_until = payload.get("valid_until")
    if valid_until is not None and now > valid_until:
        if now - valid_until < EXPIRY_GRACE_SECONDS:
            return EntitlementStatus.GRACE
        return EntitlementStatus.RESTRICTED

    if payload.get("valid") is True:
        return EntitlementStatus.ACTIVE

    if payload.get("revalidation_failed") is True:
        last_verified = payload.get("last_verified_at") or 0.0
        if now - last_verified < REVALIDATION_GRACE_SECONDS:
            return EntitlementStatus.GRACE

    # Fail-open: no explicit validity signal.
    _logger.debug("No validity signal in payload; defaulting to ACTIVE")
    return EntitlementStatus.ACTIVE


def extract_capabilities(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Build the capability map for a normalized payload."""
    capabilities: dict[str, Any] = {}

    features = payload.get("features")
    if isinstance(features, Mapping):
        capabilities.update(features)

    license_data = _nested_license(payload)
    license_features = license_data.get("features")
    if isinstance(license_features, Mapping):
        capabilities.update(license_features)

    status = effective_status(payload)
    valid = payload.get("valid")

    capabilities["updates"] = not (valid is False or status in NO_UPDATE_STATUSES)

    if isinstance(features, Mapping) and "telemetry" in features:
        capabilities["telemetry"] = bool(features["telemetry"])
    else:
        capabilities["telemetry"] = True

    capabilities["downloads"] = status in DOWNLOADABLE_STATUSES or valid is True

    if license_data.get("activations_limit") is not None:
        capabilities["max_activations"] = license_data["activations_limit"]
    if license_data.get("activations_count") is not None:
        capabilities["current_activations"] = license_data["activations_count"]

    return capabilities
