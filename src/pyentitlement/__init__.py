"""pyentitlement - Signed license entitlement resolution for Python applications."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyentitlement")
except PackageNotFoundError:
    __version__ = "0+local"
from pyentitlement._crypto import SignatureVerifier
from pyentitlement.client import LicenseClient
from pyentitlement.config import LicenseConfig
from pyentitlement.exceptions import (
    LicenseApiError,
    LicenseConfigError,
    LicenseError,
    LicenseNetworkError,
    LicenseRateLimitError,
    LicenseSignatureError,
    LicenseStateError,
    LicenseValidationError,
)
from pyentitlement.models import (
    EntitlementState,
    EntitlementStatus,
    LicenseState,
    OfflineValidationResult,
    ResponseSource,
)
from pyentitlement.state.resolver import StateResolver
from pyentitlement.state.store import StateStore

__all__ = [
    "__version__",
    "EntitlementState",
    "EntitlementStatus",
    "LicenseApiError",
    "LicenseClient",
    "LicenseConfig",
    "LicenseConfigError",
    "LicenseError",
    "LicenseNetworkError",
    "LicenseRateLimitError",
    "LicenseSignatureError",
    "LicenseState",
    "LicenseStateError",
    "LicenseValidationError",
    "OfflineValidationResult",
    "ResponseSource",
    "SignatureVerifier",
    "StateResolver",
    "StateStore",
]
