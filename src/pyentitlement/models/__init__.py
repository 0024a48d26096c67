"""Data models for license API responses and entitlement state."""

from pyentitlement.models.entitlement import DERIVED_CAPABILITIES, EntitlementState
from pyentitlement.models.license_state import LicenseState
from pyentitlement.models.offline import OfflineValidationResult
from pyentitlement.models.responses import (
    ActivationDetails,
    ActivationResponse,
    DirectValidationResponse,
    FeatureCheckResponse,
    LicenseRecord,
    ValidationData,
    ValidationResponse,
    WrappedValidationResponse,
    normalize_response,
    parse_response,
    parse_validation_response,
)
from pyentitlement.models.status import EntitlementStatus, ResponseSource

__all__ = [
    "DERIVED_CAPABILITIES",
    "ActivationDetails",
    "ActivationResponse",
    "DirectValidationResponse",
    "EntitlementState",
    "EntitlementStatus",
    "FeatureCheckResponse",
    "LicenseRecord",
    "LicenseState",
    "OfflineValidationResult",
    "ResponseSource",
    "ValidationData",
    "ValidationResponse",
    "WrappedValidationResponse",
    "normalize_response",
    "parse_response",
    "parse_validation_response",
]
