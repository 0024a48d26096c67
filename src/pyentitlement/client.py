"""High-level async client for license entitlement resolution."""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import quote

import aiohttp

from pyentitlement._constants import (
    ACTIVATE_ENDPOINT,
    DEACTIVATE_ENDPOINT,
    FEATURE_ENDPOINT,
    OFFLINE_EXPIRY_TOLERANCE_SECONDS,
    VERIFY_ENDPOINT,
)
from pyentitlement._crypto.signature import SignatureVerifier
from pyentitlement._normalize import normalize_timestamp_seconds
from pyentitlement._transport import HttpTransport, Transport
from pyentitlement.config import LicenseConfig
from pyentitlement.exceptions import (
    LicenseError,
    LicenseNetworkError,
    LicenseSignatureError,
    LicenseStateError,
    LicenseValidationError,
)
from pyentitlement.models.entitlement import EntitlementState
from pyentitlement.models.license_state import LicenseState
from pyentitlement.models.offline import OfflineValidationResult
from pyentitlement.state.resolver import StateResolver
from pyentitlement.state.store import StateStore, feature_key, validation_key

_logger = logging.getLogger(__name__)


def _require_license_key(license_key: Any) -> str:
    if not isinstance(license_key, str) or not license_key.strip():
        raise LicenseValidationError("License key cannot be empty", code="INVALID_LICENSE_KEY")
    return license_key.strip()


def _identity_payload(license_key: str, hardware_id: str | None, domain: str | None) -> dict[str, Any]:
    payload: dict[str, Any] = {"license_key": license_key}
    if hardware_id:
        payload["hardware_id"] = hardware_id
    if domain:
        payload["domain"] = domain
    return payload


class LicenseClient:
    """Async client that resolves license entitlement states.

    Resolution is cache-first: a fresh, verified cached state is returned
    without I/O; a stale or missing one is revalidated against the API; a
    network failure falls back to a bounded grace state derived from the
    last verified snapshot.

    Usage::

        async with LicenseClient(config) as client:
            state = await client.resolve_license_state("XXXX-XXXX")
            if state.can_update:
                ...
    """

    def __init__(
        self,
        config: LicenseConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._clock = clock
        self._external_session = session is not None
        self._http_session = session
        self._transport: Transport | None = transport
        self._owns_transport = transport is None

        self._verifier: SignatureVerifier | None = None
        if config.should_verify_signatures:
            assert config.public_key is not None  # noqa: S101
            self._verifier = SignatureVerifier(config.public_key)

        self._store = StateStore(self._verifier, default_ttl=config.cache_ttl, clock=clock)
        self._resolver = StateResolver(
            self._verifier,
            environment=config.environment,
            product_id=config.product_id,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> LicenseClient:
        if self._owns_transport:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = HttpTransport(self._config, self._http_session)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        if self._owns_transport:
            self._transport = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def resolver(self) -> StateResolver:
        return self._resolver

    @property
    def verifier(self) -> SignatureVerifier | None:
        return self._verifier

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise LicenseError("Client not initialized. Use 'async with LicenseClient(...) as client:'")
        return self._transport

    def _wrap(self, state: EntitlementState, license_key: str | None) -> LicenseState:
        return LicenseState(state, license_key, clock=self._clock)

    def _read_cache(self, key: str, context: str | None) -> EntitlementState | None:
        """Cache read where a signature failure or context mismatch is a miss."""
        if not self._config.cache_enabled:
            return None
        try:
            cached = self._store.get(key)
        except LicenseSignatureError as exc:
            _logger.info("Cached entitlement %s rejected (%s); revalidating", key, exc)
            return None
        if cached is not None and context and not cached.verify_context_binding(context):
            _logger.info("Cached entitlement %s is bound to another context; revalidating", key)
            self._store.remove(key)
            return None
        return cached

    def _is_fresh(self, state: EntitlementState) -> bool:
        return not state.needs_revalidation(self._config.revalidation_interval, self._clock())

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve_license_state(
        self,
        license_key: str,
        *,
        hardware_id: str | None = None,
        domain: str | None = None,
    ) -> LicenseState:
        """Resolve the entitlement state for *license_key*.

        Raises
        ------
        LicenseValidationError
            Empty license key or malformed response.
        LicenseSignatureError
            The fresh response failed signature verification.
        LicenseNetworkError
            The API was unreachable and no usable grace state exists.
        LicenseApiError
            The API rejected the request.
        """
        license_key = _require_license_key(license_key)
        key = validation_key(license_key)

        cached = self._read_cache(key, hardware_id or domain)
        if cached is not None and self._is_fresh(cached):
            return self._wrap(cached, license_key)

        transport = self._require_transport()
        try:
            response = await transport.request(
                "POST",
                VERIFY_ENDPOINT,
                _identity_payload(license_key, hardware_id, domain),
            )
        except LicenseNetworkError:
            if cached is not None and cached.allows_operation():
                grace = self._resolver.create_grace_state(cached)
                if grace.is_in_grace():
                    _logger.info("License API unreachable; serving grace state for %s", key)
                    return self._wrap(grace, license_key)
                _logger.info("License API unreachable and grace window for %s has lapsed", key)
            raise

        state = self._resolver.resolve_from_validation(response)
        if self._config.cache_enabled:
            self._store.set(key, state)
        return self._wrap(state, license_key)

    async def get_license_state(
        self,
        license_key: str,
        *,
        hardware_id: str | None = None,
        domain: str | None = None,
    ) -> LicenseState:
        """Like :meth:`resolve_license_state` but never raises a library error.

        Any :class:`LicenseError` becomes a RESTRICTED state whose metadata
        carries the failure reason.
        """
        try:
            return await self.resolve_license_state(license_key, hardware_id=hardware_id, domain=domain)
        except LicenseError as exc:
            _logger.debug("Resolution failed, returning restricted state: %s", exc)
            key = license_key if isinstance(license_key, str) else None
            return self._wrap(self._resolver.create_restricted_state(str(exc)), key)

    async def is_feature_allowed(self, license_key: str, feature: str) -> bool:
        state = await self.resolve_license_state(license_key)
        return state.allows(feature)

    async def require_capability(self, license_key: str, capability: str) -> LicenseState:
        """Resolve and insist on *capability* (e.g. ``"updates"``, ``"downloads"``).

        Raises
        ------
        LicenseStateError
            The resolved state does not grant *capability*.
        """
        state = await self.resolve_license_state(license_key)
        if not state.allows(capability):
            raise LicenseStateError(
                f"License does not have required capability: {capability}",
                capability=capability,
                state=state.state.value,
            )
        return state

    async def check_feature(self, license_key: str, feature: str) -> LicenseState:
        """Ask the feature-check endpoint about one feature."""
        license_key = _require_license_key(license_key)
        if not feature:
            raise LicenseValidationError("Feature name cannot be empty", code="MISSING_PARAMETER")

        key = feature_key(license_key, feature)
        cached = self._read_cache(key, None)
        if cached is not None and self._is_fresh(cached):
            return self._wrap(cached, license_key)

        transport = self._require_transport()
        endpoint = FEATURE_ENDPOINT.format(license_key=quote(license_key, safe=""), feature=quote(feature, safe=""))
        response = await transport.request("GET", endpoint)
        state = self._resolver.resolve_from_feature_check(response)
        if self._config.cache_enabled:
            self._store.set(key, state)
        return self._wrap(state, license_key)

    def clear_license_state(self, license_key: str) -> None:
        self._store.clear_license(_require_license_key(license_key))

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    async def activate_license(
        self,
        license_key: str,
        *,
        hardware_id: str | None = None,
        domain: str | None = None,
        idempotency_key: str | None = None,
    ) -> LicenseState:
        """Activate *license_key* on a machine or domain."""
        license_key = _require_license_key(license_key)
        if not hardware_id and not domain:
            raise LicenseValidationError("Either hardware_id or domain is required", code="MISSING_PARAMETER")

        transport = self._require_transport()
        response = await transport.request(
            "POST",
            ACTIVATE_ENDPOINT,
            _identity_payload(license_key, hardware_id, domain),
            headers={"Idempotency-Key": idempotency_key or str(uuid.uuid4())},
        )
        self._store.clear_license(license_key)
        return self._wrap(self._resolver.resolve_from_activation(response), license_key)

    async def deactivate_license(
        self,
        license_key: str,
        *,
        hardware_id: str | None = None,
        domain: str | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        license_key = _require_license_key(license_key)
        transport = self._require_transport()
        response = await transport.request(
            "POST",
            DEACTIVATE_ENDPOINT,
            _identity_payload(license_key, hardware_id, domain),
            headers={"Idempotency-Key": idempotency_key or str(uuid.uuid4())},
        )
        self._store.clear_license(license_key)
        return response

    # ------------------------------------------------------------------
    # Offline license files
    # ------------------------------------------------------------------

    def validate_offline_license(
        self,
        data: str | Mapping[str, Any],
        *,
        hardware_id: str | None = None,
        public_key: str | None = None,
    ) -> OfflineValidationResult:
        """Check a signed offline license document without network access.

        Failed checks are collected in ``errors`` rather than raised.

        Raises
        ------
        LicenseValidationError
            *data* is not valid JSON, lacks ``license``/``signature``, or no
            public key is available.
        """
        if isinstance(data, str):
            try:
                document = json.loads(data)
            except json.JSONDecodeError as exc:
                raise LicenseValidationError(f"Invalid JSON: {exc}") from exc
        else:
            document = dict(data)

        if not isinstance(document, dict) or not isinstance(document.get("license"), dict) or not document.get("signature"):
            raise LicenseValidationError("Invalid offline license format")

        if public_key:
            verifier = SignatureVerifier(public_key)
        elif self._verifier is not None:
            verifier = self._verifier
        elif self._config.public_key:
            verifier = SignatureVerifier(self._config.public_key)
        else:
            raise LicenseValidationError("Public key is required for offline validation")

        errors: list[str] = []
        license_data: dict[str, Any] = document["license"]

        try:
            if not verifier.verify_document(document):
                errors.append("Signature verification failed")
        except LicenseValidationError as exc:
            errors.append(f"Signature verification error: {exc}")

        expires_at = normalize_timestamp_seconds(license_data.get("expires_at"))
        if expires_at is not None and self._clock() - OFFLINE_EXPIRY_TOLERANCE_SECONDS > expires_at:
            errors.append("License has expired")

        bound_hardware = license_data.get("hardware_id")
        if hardware_id and bound_hardware and hardware_id != bound_hardware:
            errors.append("Hardware ID mismatch")

        return OfflineValidationResult(valid=not errors, license=license_data, errors=errors)
