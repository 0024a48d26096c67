"""Resolve entitlement snapshots from license API responses.

Signatures are checked before any field of a response is read.  The
canonical text that was verified is kept on the resulting snapshot so the
state store can re-verify it on every read.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from pyentitlement._crypto.canonical import canonicalize_json, strip_signature
from pyentitlement._crypto.signature import SignatureVerifier
from pyentitlement._normalize import normalize_timestamp_seconds
from pyentitlement.exceptions import LicenseSignatureError, LicenseValidationError
from pyentitlement.models.entitlement import DERIVED_CAPABILITIES, EntitlementState
from pyentitlement.models.responses import normalize_response
from pyentitlement.models.status import EntitlementStatus, ResponseSource

_logger = logging.getLogger(__name__)


class StateResolver:
    """Build :class:`EntitlementState` instances from raw responses.

    Parameters
    ----------
    verifier : SignatureVerifier or None
        When set, every response carrying a ``signature`` must verify.
    environment, product_id : str or None
        Context attached to every snapshot.
    clock : callable
        Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        verifier: SignatureVerifier | None = None,
        *,
        environment: str | None = None,
        product_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._verifier = verifier
        self._environment = environment
        self._product_id = product_id
        self._clock = clock

    @property
    def verifier(self) -> SignatureVerifier | None:
        return self._verifier

    # ------------------------------------------------------------------
    # Fresh responses
    # ------------------------------------------------------------------

    def resolve_from_validation(self, response: Mapping[str, Any]) -> EntitlementState:
        return self._resolve(ResponseSource.VALIDATION, response)

    def resolve_from_feature_check(self, response: Mapping[str, Any]) -> EntitlementState:
        return self._resolve(ResponseSource.FEATURE, response)

    def resolve_from_activation(self, response: Mapping[str, Any]) -> EntitlementState:
        return self._resolve(ResponseSource.ACTIVATION, response)

    def _resolve(self, source: ResponseSource, response: Mapping[str, Any]) -> EntitlementState:
        if not isinstance(response, Mapping):
            raise LicenseValidationError(f"{source} response must be a JSON object")

        remainder, signature = strip_signature(response)
        if signature is not None and not isinstance(signature, str):
            raise LicenseSignatureError("Response signature must be a string", code="SIGNATURE_MISSING")
        try:
            signed_payload = canonicalize_json(remainder)
        except (TypeError, ValueError) as exc:
            raise LicenseValidationError(f"{source} response is not representable as canonical JSON: {exc}") from exc

        if signature and self._verifier is not None:
            self._verify(signed_payload, signature)
        elif self._verifier is not None:
            _logger.debug("Unsigned %s response accepted; it will not be cached", source)

        payload = normalize_response(source, remainder)
        now = self._clock()
        payload["environment"] = self._environment
        payload["product_id"] = self._product_id
        payload["issued_at"] = normalize_timestamp_seconds(remainder.get("timestamp")) or now

        return EntitlementState.from_payload(
            payload,
            signature=signature or None,
            signed_payload=signed_payload,
            source=source,
            now=now,
        )

    def _verify(self, signed_payload: str, signature: str) -> None:
        assert self._verifier is not None  # noqa: S101
        try:
            verified = self._verifier.verify(signed_payload, signature)
        except LicenseValidationError as exc:
            raise LicenseSignatureError(
                f"Response signature is malformed: {exc}",
                code="SIGNATURE_VERIFICATION_FAILED",
            ) from exc
        if not verified:
            raise LicenseSignatureError(
                "Response signature verification failed",
                code="SIGNATURE_VERIFICATION_FAILED",
            )

    # ------------------------------------------------------------------
    # Synthetic states
    # ------------------------------------------------------------------

    def create_restricted_state(self, reason: str) -> EntitlementState:
        """State for "could not validate"; never cached."""
        payload = {
            "valid": False,
            "status": "restricted",
            "metadata": {"reason": reason},
            "environment": self._environment,
            "product_id": self._product_id,
        }
        return EntitlementState.from_payload(
            payload,
            forced_state=EntitlementStatus.RESTRICTED,
            now=self._clock(),
        )

    def create_grace_state(self, prior: EntitlementState) -> EntitlementState:
        """State for "revalidation failed but *prior* still allows operation".

        The prior snapshot's validity window and binding are carried over
        and the payload is marked ``revalidation_failed``.  Whether the result
        is GRACE depends on how long ago *prior* was last verified.
        """
        features = {name: value for name, value in prior.capabilities.items() if name not in DERIVED_CAPABILITIES}
        limits: dict[str, Any] = {}
        if prior.capabilities.get("max_activations") is not None:
            limits["activations_limit"] = prior.capabilities["max_activations"]
        if prior.capabilities.get("current_activations") is not None:
            limits["activations_count"] = prior.capabilities["current_activations"]

        payload: dict[str, Any] = {
            "status": prior.status,
            "features": features,
            "metadata": prior.get_metadata(),
            "valid_from": prior.valid_from,
            "valid_until": prior.valid_until,
            "context_binding": prior.context_binding,
            "environment": prior.environment,
            "product_id": prior.product_id,
            "issued_at": prior.issued_at,
            "revalidation_failed": True,
            "last_verified_at": prior.last_verified_at,
        }
        if limits:
            payload["license"] = limits
        return EntitlementState.from_payload(
            payload,
            signature=prior.signature,
            now=self._clock(),
        )
