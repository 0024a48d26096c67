"""Public accessor surface over an entitlement snapshot."""

from __future__ import annotations

import json
import math
import time
from collections.abc import Callable
from typing import Any

from pyentitlement._constants import DEFAULT_REVALIDATION_INTERVAL, SECONDS_PER_DAY
from pyentitlement.models.entitlement import EntitlementState
from pyentitlement.models.status import EntitlementStatus

_STATUS_MESSAGES: dict[EntitlementStatus, str] = {
    EntitlementStatus.ACTIVE: "License is active and valid",
    EntitlementStatus.GRACE: "License is in grace period - please revalidate soon",
    EntitlementStatus.RESTRICTED: "License is restricted - activation or validation required",
    EntitlementStatus.INVALID: "License is invalid or has been revoked",
}


class LicenseState:
    """What callers get back from the client.

    Wraps an :class:`EntitlementState` together with the license key it was
    resolved for.  All time-dependent queries use the injected *clock*.
    """

    def __init__(
        self,
        entitlement: EntitlementState,
        license_key: str | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entitlement = entitlement
        self._license_key = license_key
        self._clock = clock

    def __repr__(self) -> str:
        return f"LicenseState(state={self.state.value!r}, license_key={self._license_key!r})"

    def __str__(self) -> str:
        return self.status_message

    @property
    def entitlement(self) -> EntitlementState:
        return self._entitlement

    @property
    def license_key(self) -> str | None:
        return self._license_key

    @property
    def state(self) -> EntitlementStatus:
        return self._entitlement.state

    @property
    def is_valid(self) -> bool:
        """Whether the software may keep operating (ACTIVE or GRACE)."""
        return self._entitlement.allows_operation()

    @property
    def is_active(self) -> bool:
        return self._entitlement.is_active()

    @property
    def is_in_grace_period(self) -> bool:
        return self._entitlement.is_in_grace()

    @property
    def is_expired(self) -> bool:
        return self._entitlement.is_expired(self._clock())

    def allows(self, feature: str) -> bool:
        return self._entitlement.has_capability(feature)

    def get_feature_value(self, feature: str) -> Any:
        return self._entitlement.get_capability_value(feature)

    @property
    def can_update(self) -> bool:
        return self.allows("updates")

    @property
    def can_download(self) -> bool:
        return self.allows("downloads")

    @property
    def can_send_telemetry(self) -> bool:
        return self.allows("telemetry")

    @property
    def status_message(self) -> str:
        return _STATUS_MESSAGES.get(self.state, "License status unknown")

    @property
    def expires_at(self) -> float | None:
        return self._entitlement.valid_until

    def days_until_expiration(self) -> int | None:
        """Whole days left before ``valid_until``; ``None`` for lifetime licenses."""
        expires_at = self.expires_at
        if expires_at is None:
            return None
        return math.floor((expires_at - self._clock()) / SECONDS_PER_DAY)

    def needs_revalidation(self, interval: float = DEFAULT_REVALIDATION_INTERVAL) -> bool:
        return self._entitlement.needs_revalidation(interval, self._clock())

    @property
    def features(self) -> dict[str, Any]:
        return self._entitlement.get_capabilities()

    @property
    def metadata(self) -> dict[str, Any]:
        return self._entitlement.get_metadata()

    def verify_context(self, context: str) -> bool:
        return self._entitlement.verify_context_binding(context)

    def to_dict(self) -> dict[str, Any]:
        return {
            "license_key": self._license_key,
            "is_valid": self.is_valid,
            "is_active": self.is_active,
            "is_in_grace_period": self.is_in_grace_period,
            "is_expired": self.is_expired,
            "state": self.state.value,
            "status_message": self.status_message,
            "expires_at": self.expires_at,
            "days_until_expiration": self.days_until_expiration(),
            "features": self.features,
            "metadata": self.metadata,
        }

    def to_json(self, *, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)
