"""Response-shape models for the license API.

The validation endpoint answers in two interchangeable shapes::

    {"data": {"valid": true, "license": {...}}, "signature": "..."}
    {"valid": true, "license": {...}, "signature": "..."}

They are modelled as a tagged union (:data:`ValidationResponse`) with one
normalizer per variant.  Feature-check and activation responses have their
own models.  Every variant's ``to_payload()`` yields the normalized payload
consumed by :mod:`pyentitlement.state.policy`.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError,
)

from pyentitlement._crypto.hashing import context_hash
from pyentitlement._normalize import normalize_timestamp_seconds, safe_int, safe_str
from pyentitlement.exceptions import LicenseValidationError
from pyentitlement.models.status import ResponseSource


def _dict_or_empty(value: Any) -> Any:
    return {} if value is None else value


def _bool_or_false(value: Any) -> Any:
    return False if value is None else value


EpochSeconds = Annotated[float | None, BeforeValidator(normalize_timestamp_seconds)]
"""Annotated type accepting ISO-8601 strings or epoch seconds/milliseconds."""

OptionalStr = Annotated[str | None, BeforeValidator(safe_str)]
OptionalInt = Annotated[int | None, BeforeValidator(safe_int)]
JsonObject = Annotated[dict[str, Any], BeforeValidator(_dict_or_empty)]
Flag = Annotated[bool, BeforeValidator(_bool_or_false)]


class _ResponseModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


def _binding_for(hardware_id: str | None, domain: str | None) -> str | None:
    if hardware_id:
        return context_hash(hardware_id)
    if domain:
        return context_hash(domain)
    return None


class LicenseRecord(_ResponseModel):
    """The ``license`` object embedded in validation responses."""

    status: OptionalStr = None
    features: JsonObject = Field(default_factory=dict)
    metadata: JsonObject = Field(default_factory=dict)
    expires_at: EpochSeconds = None
    activated_at: EpochSeconds = None
    hardware_id: OptionalStr = None
    domain: OptionalStr = None
    activations_limit: OptionalInt = None
    activations_count: OptionalInt = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": self.status,
            "features": dict(self.features),
            "metadata": dict(self.metadata),
        }
        if self.expires_at is not None:
            payload["valid_until"] = self.expires_at
        if self.activated_at is not None:
            payload["valid_from"] = self.activated_at

        binding = _binding_for(self.hardware_id, self.domain)
        if binding is not None:
            payload["context_binding"] = binding

        limits: dict[str, int] = {}
        if self.activations_limit is not None:
            limits["activations_limit"] = self.activations_limit
        if self.activations_count is not None:
            limits["activations_count"] = self.activations_count
        if limits:
            payload["license"] = limits
        return payload


class ValidationData(_ResponseModel):
    valid: Flag = False
    license: LicenseRecord | None = None


class WrappedValidationResponse(_ResponseModel):
    """``{"data": {"valid": ..., "license": {...}}}``"""

    data: ValidationData
    timestamp: EpochSeconds = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"valid": self.data.valid}
        if self.data.license is not None:
            payload.update(self.data.license.to_payload())
        return payload


class DirectValidationResponse(_ResponseModel):
    """``{"valid": ..., "license": {...}}``"""

    valid: Flag = False
    license: LicenseRecord | None = None
    timestamp: EpochSeconds = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"valid": self.valid}
        if self.license is not None:
            payload.update(self.license.to_payload())
        return payload


def _validation_shape(value: Any) -> str:
    if isinstance(value, Mapping):
        return "wrapped" if isinstance(value.get("data"), Mapping) else "direct"
    return "wrapped" if isinstance(value, WrappedValidationResponse) else "direct"


ValidationResponse = Annotated[
    Annotated[WrappedValidationResponse, Tag("wrapped")] | Annotated[DirectValidationResponse, Tag("direct")],
    Discriminator(_validation_shape),
]

_VALIDATION_ADAPTER: TypeAdapter[WrappedValidationResponse | DirectValidationResponse] = TypeAdapter(
    ValidationResponse
)


class FeatureCheckResponse(_ResponseModel):
    """``{"feature": "sso", "enabled": true, "value": 25}``"""

    feature: str = "unknown"
    enabled: Flag = False
    value: Any = None
    timestamp: EpochSeconds = None

    def to_payload(self) -> dict[str, Any]:
        value = self.value if self.value is not None else self.enabled
        return {"valid": self.enabled, "features": {self.feature: value}}


class ActivationDetails(_ResponseModel):
    hardware_id: OptionalStr = None
    domain: OptionalStr = None
    activated_at: EpochSeconds = None


class ActivationResponse(_ResponseModel):
    """``{"success": true, "activation": {"hardware_id": ..., "activated_at": ...}}``"""

    success: Flag = False
    activation: ActivationDetails | None = None
    timestamp: EpochSeconds = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"valid": self.success, "status": "active"}
        if self.activation is not None:
            binding = _binding_for(self.activation.hardware_id, self.activation.domain)
            if binding is not None:
                payload["context_binding"] = binding
            if self.activation.activated_at is not None:
                payload["valid_from"] = self.activation.activated_at
        return payload


AnyResponse = WrappedValidationResponse | DirectValidationResponse | FeatureCheckResponse | ActivationResponse


def parse_validation_response(raw: Mapping[str, Any]) -> WrappedValidationResponse | DirectValidationResponse:
    """Pick the validation variant by shape and parse it."""
    return _VALIDATION_ADAPTER.validate_python(dict(raw))


def parse_response(source: ResponseSource, raw: Mapping[str, Any]) -> AnyResponse:
    """Parse *raw* as the response model for *source*.

    Raises
    ------
    LicenseValidationError
        If *raw* is not an object or does not fit the expected shape.
    """
    if not isinstance(raw, Mapping):
        raise LicenseValidationError(f"Expected a JSON object for {source} response")
    try:
        if source == ResponseSource.VALIDATION:
            return parse_validation_response(raw)
        if source == ResponseSource.FEATURE:
            return FeatureCheckResponse.model_validate(dict(raw))
        if source == ResponseSource.ACTIVATION:
            return ActivationResponse.model_validate(dict(raw))
    except ValidationError as exc:
        raise LicenseValidationError(f"Malformed {source} response: {exc}") from exc
    raise LicenseValidationError(f"No response model for source {source!r}")


def normalize_response(source: ResponseSource, raw: Mapping[str, Any]) -> dict[str, Any]:
    """Parse and normalize a raw response into the entitlement payload schema."""
    return parse_response(source, raw).to_payload()
