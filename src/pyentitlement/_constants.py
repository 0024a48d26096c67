"""Internal constants shared across the library."""

BASE_URL = "https://api.getkeymanager.com"
USER_AGENT = "pyentitlement/1"

VERIFY_ENDPOINT = "/v1/verify"
ACTIVATE_ENDPOINT = "/v1/activate"
DEACTIVATE_ENDPOINT = "/v1/deactivate"
FEATURE_ENDPOINT = "/v1/licenses/{license_key}/features/{feature}"

SECONDS_PER_DAY = 86400

# Expired licenses keep operating for this long after ``valid_until``.
EXPIRY_GRACE_SECONDS = 7 * SECONDS_PER_DAY

# A failed revalidation keeps the last verified state usable for this long.
REVALIDATION_GRACE_SECONDS = 72 * 3600

# Offline license files are accepted this long past their expiry.
OFFLINE_EXPIRY_TOLERANCE_SECONDS = 24 * 3600

DEFAULT_REVALIDATION_INTERVAL = float(SECONDS_PER_DAY)
# Cached entries outlive the revalidation interval by the grace window.
DEFAULT_CACHE_TTL = DEFAULT_REVALIDATION_INTERVAL + REVALIDATION_GRACE_SECONDS

MIN_RSA_KEY_BITS = 2048
EXPECTED_RSA_KEY_BITS = 4096

INVALID_STATUSES: frozenset[str] = frozenset({"revoked", "suspended", "cancelled"})
NO_UPDATE_STATUSES: frozenset[str] = frozenset({"revoked", "suspended"})
DOWNLOADABLE_STATUSES: frozenset[str] = frozenset({"active", "assigned", "available"})

CACHE_KEY_PREFIX = "entitlement"
