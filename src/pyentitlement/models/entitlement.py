"""Immutable entitlement snapshot.

An :class:`EntitlementState` is derived once from a normalized payload and
never mutated afterwards.  Reading cached data always goes through
:meth:`EntitlementState.from_cache`, which re-verifies the embedded signature
and rebuilds a fresh instance from the signed bytes.  Trust-bearing fields
stored next to the signature (``state``, ``capabilities``, validity window)
are informational only and are never read back.
"""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer

from pyentitlement._crypto.hashing import context_matches
from pyentitlement.exceptions import LicenseSignatureError, LicenseValidationError
from pyentitlement.models.responses import normalize_response
from pyentitlement.models.status import EntitlementStatus, ResponseSource
from pyentitlement.state.policy import determine_state, effective_status, extract_capabilities

if TYPE_CHECKING:
    from pyentitlement._crypto.signature import SignatureVerifier

#: Capabilities computed by policy rather than read from the payload.
DERIVED_CAPABILITIES: frozenset[str] = frozenset(
    {"updates", "downloads", "max_activations", "current_activations"}
)

_ALLOWING_STATES = frozenset({EntitlementStatus.ACTIVE, EntitlementStatus.GRACE})


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


FrozenMapping = Annotated[
    Mapping[str, Any],
    AfterValidator(_freeze),
    PlainSerializer(_thaw, return_type=dict[str, Any]),
]
"""Read-only mapping, frozen recursively; serializes back to plain dicts and lists."""


class EntitlementState(BaseModel):
    """Trust status, capabilities and validity window for one license.

    Parameters
    ----------
    state : EntitlementStatus
        Classification computed at construction.
    capabilities : Mapping
        Read-only capability name -> bool or numeric limit.  Use
        :meth:`get_capabilities` for a mutable copy.
    metadata : Mapping
        Read-only pass-through metadata.
    status : str or None
        Lower-cased license status reported by the API.
    valid_from, valid_until : float or None
        Validity window in epoch seconds; ``None`` means unbounded.
    context_binding : str or None
        SHA-256 hex digest of the hardware id or domain the state is bound to.
    signature : str or None
        Base64 RSA signature over ``signed_payload``.
    signed_payload : str or None
        Canonical JSON of the response the signature covers.
    source : ResponseSource
        Response shape ``signed_payload`` must be re-normalized with.
    issued_at, last_verified_at : float
        Epoch seconds.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: EntitlementStatus
    capabilities: FrozenMapping = Field(default_factory=dict, validate_default=True)
    status: str | None = None
    valid_from: float | None = None
    valid_until: float | None = None
    context_binding: str | None = None
    product_id: str | None = None
    environment: str | None = None
    metadata: FrozenMapping = Field(default_factory=dict, validate_default=True)
    signature: str | None = None
    issued_at: float
    last_verified_at: float
    source: ResponseSource = ResponseSource.SYNTHETIC
    signed_payload: str | None = None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        *,
        signature: str | None = None,
        signed_payload: str | None = None,
        source: ResponseSource = ResponseSource.SYNTHETIC,
        forced_state: EntitlementStatus | None = None,
        now: float | None = None,
    ) -> EntitlementState:
        """Classify *payload* and build a snapshot.

        ``forced_state`` is reserved for synthetic states whose
        classification is decided by the caller (e.g. RESTRICTED after a
        failed resolution).
        """
        if not isinstance(payload, Mapping):
            raise LicenseValidationError("Invalid payload: must be a mapping")
        if now is None:
            now = time.time()

        state = forced_state if forced_state is not None else determine_state(payload, now)
        metadata = payload.get("metadata")
        return cls(
            state=state,
            capabilities=extract_capabilities(payload),
            status=effective_status(payload),
            valid_from=payload.get("valid_from"),
            valid_until=payload.get("valid_until"),
            context_binding=payload.get("context_binding"),
            product_id=payload.get("product_id"),
            environment=payload.get("environment"),
            metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
            signature=signature,
            signed_payload=signed_payload,
            source=source,
            issued_at=payload.get("issued_at") or now,
            last_verified_at=payload.get("last_verified_at") or now,
        )

    @classmethod
    def from_cache(
        cls,
        record: Mapping[str, Any],
        verifier: SignatureVerifier | None = None,
        *,
        now: float | None = None,
    ) -> EntitlementState:
        """Rebuild a snapshot from a persisted record.

        With a verifier configured the record must carry ``signature`` and
        ``signed_payload`` and the signature must verify.  The state is then
        re-derived from ``signed_payload``; only ``issued_at``,
        ``last_verified_at``, ``environment`` and ``product_id`` are taken
        from the record itself.

        Raises
        ------
        LicenseSignatureError
            Missing or failing signature, or a record that cannot be rebuilt.
        """
        signature = record.get("signature")
        signed_payload = record.get("signed_payload")

        if verifier is not None:
            if not signature:
                raise LicenseSignatureError("Cached state missing signature", code="SIGNATURE_MISSING")
            if not signed_payload:
                raise LicenseSignatureError("Cached state missing signed payload", code="SIGNATURE_MISSING")
            try:
                verified = verifier.verify(signed_payload, signature)
            except LicenseValidationError as exc:
                raise LicenseSignatureError(
                    f"Cached state signature is malformed: {exc}",
                    code="SIGNATURE_VERIFICATION_FAILED",
                ) from exc
            if not verified:
                raise LicenseSignatureError(
                    "Cached state signature verification failed",
                    code="SIGNATURE_VERIFICATION_FAILED",
                )

        if not signed_payload:
            raise LicenseSignatureError("Cached state has no source payload to rebuild from")

        try:
            source = ResponseSource(record.get("source", ResponseSource.VALIDATION))
            payload = normalize_response(source, json.loads(signed_payload))
        except (ValueError, TypeError, LicenseValidationError) as exc:
            raise LicenseSignatureError(f"Cached state is corrupt: {exc}") from exc

        payload["environment"] = record.get("environment")
        payload["product_id"] = record.get("product_id")
        payload["issued_at"] = record.get("issued_at")
        payload["last_verified_at"] = record.get("last_verified_at")
        return cls.from_payload(
            payload,
            signature=signature,
            signed_payload=signed_payload,
            source=source,
            now=now,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_capability(self, capability: str) -> bool:
        return self.capabilities.get(capability) is True

    def get_capability_value(self, capability: str) -> Any:
        return self.capabilities.get(capability)

    def is_active(self) -> bool:
        return self.state == EntitlementStatus.ACTIVE

    def is_in_grace(self) -> bool:
        return self.state == EntitlementStatus.GRACE

    def allows_operation(self) -> bool:
        return self.state in _ALLOWING_STATES

    def is_expired(self, now: float | None = None) -> bool:
        if self.valid_until is None:
            return False
        current = time.time() if now is None else now
        return current > self.valid_until

    def needs_revalidation(self, interval: float = 86400.0, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return (current - self.last_verified_at) > interval

    def get_capabilities(self) -> dict[str, Any]:
        return _thaw(self.capabilities)

    def get_metadata(self) -> dict[str, Any]:
        return _thaw(self.metadata)

    @property
    def validity_window(self) -> tuple[float | None, float | None]:
        return self.valid_from, self.valid_until

    def verify_context_binding(self, context: str) -> bool:
        """Check *context* against the stored binding; unbound states match anything."""
        if self.context_binding is None:
            return True
        return context_matches(context, self.context_binding)

    @property
    def is_synthetic(self) -> bool:
        return self.source == ResponseSource.SYNTHETIC

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_record(self) -> dict[str, Any]:
        """Plain, JSON-compatible record for persistence."""
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        return json.dumps(self.to_record(), separators=(",", ":"))
