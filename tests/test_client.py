from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from typing import Any

import pytest
from conftest import DAY, NOW, FakeClock, validation_body

from pyentitlement._crypto.hashing import context_hash
from pyentitlement.client import LicenseClient
from pyentitlement.config import LicenseConfig
from pyentitlement.exceptions import (
    LicenseApiError,
    LicenseError,
    LicenseNetworkError,
    LicenseStateError,
    LicenseValidationError,
)
from pyentitlement.models.status import EntitlementStatus
from pyentitlement.state.store import feature_key, validation_key


class _FakeTransport:
    """Replays queued responses; queued exceptions are raised."""

    def __init__(self) -> None:
        self.responses: list[dict[str, Any] | Exception] = []
        self.calls: list[tuple[str, str, dict[str, Any] | None, dict[str, str] | None]] = []

    def queue(self, *items: dict[str, Any] | Exception) -> None:
        self.responses.extend(items)

    async def request(
        self,
        method: str,
        endpoint: str,
        payload: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        self.calls.append((method, endpoint, dict(payload) if payload else None, dict(headers) if headers else None))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def transport() -> _FakeTransport:
    return _FakeTransport()


@pytest.fixture
def make_client(public_key_pem, transport, clock: FakeClock) -> Callable[..., LicenseClient]:
    def _make(**overrides: Any) -> LicenseClient:
        config = LicenseConfig(api_key="sk_test", public_key=public_key_pem, **overrides)
        return LicenseClient(config, transport=transport, clock=clock)

    return _make


def _offline() -> LicenseNetworkError:
    return LicenseNetworkError("connection refused", endpoint="/v1/verify", code="CONNECTION_ERROR")


@pytest.mark.asyncio
async def test_signed_response_resolves_active(make_client, transport, sign) -> None:
    transport.queue(sign(validation_body(features={"sso": True})))

    async with make_client() as client:
        state = await client.resolve_license_state("KEY-1")

    assert state.is_active is True
    assert state.days_until_expiration() == 30
    assert state.allows("sso") is True
    assert state.can_update is True
    method, endpoint, payload, _ = transport.calls[0]
    assert (method, endpoint, payload) == ("POST", "/v1/verify", {"license_key": "KEY-1"})


@pytest.mark.asyncio
async def test_fresh_cache_hit_skips_network(make_client, transport, sign, clock: FakeClock) -> None:
    transport.queue(sign(validation_body()))

    async with make_client(cache_ttl=3600) as client:
        await client.resolve_license_state("KEY-1")
        clock.advance(60)
        state = await client.resolve_license_state("KEY-1")

    assert state.is_active is True
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_network_failure_falls_back_to_grace(make_client, transport, sign, clock: FakeClock) -> None:
    transport.queue(sign(validation_body()), _offline())

    async with make_client(cache_ttl=10 * DAY, revalidation_interval=3600) as client:
        first = await client.resolve_license_state("KEY-1")
        clock.advance(2 * DAY)
        second = await client.resolve_license_state("KEY-1")

    assert first.state is EntitlementStatus.ACTIVE
    assert second.state is EntitlementStatus.GRACE
    assert second.is_valid is True
    assert second.allows("sso") is True
    assert client.store.get_stats()["total"] == 1


@pytest.mark.asyncio
async def test_network_failure_after_grace_window_propagates(make_client, transport, sign, clock: FakeClock) -> None:
    transport.queue(sign(validation_body()), _offline())

    async with make_client(cache_ttl=10 * DAY, revalidation_interval=3600) as client:
        await client.resolve_license_state("KEY-1")
        clock.advance(73 * 3600)
        with pytest.raises(LicenseNetworkError):
            await client.resolve_license_state("KEY-1")


@pytest.mark.asyncio
async def test_network_failure_without_cache_propagates(make_client, transport) -> None:
    transport.queue(_offline())

    async with make_client() as client:
        with pytest.raises(LicenseNetworkError):
            await client.resolve_license_state("KEY-1")


@pytest.mark.asyncio
async def test_api_rejection_does_not_fall_back(make_client, transport, sign, clock: FakeClock) -> None:
    transport.queue(
        sign(validation_body()),
        LicenseApiError("License not found", status_code=404, code="LICENSE_NOT_FOUND"),
    )

    async with make_client(cache_ttl=10 * DAY, revalidation_interval=3600) as client:
        await client.resolve_license_state("KEY-1")
        clock.advance(2 * 3600)
        with pytest.raises(LicenseApiError):
            await client.resolve_license_state("KEY-1")


@pytest.mark.asyncio
async def test_tampered_cache_entry_forces_revalidation(make_client, transport, sign, clock: FakeClock) -> None:
    transport.queue(sign(validation_body()), sign(validation_body(status="suspended")))

    async with make_client(cache_ttl=3600) as client:
        await client.resolve_license_state("KEY-1")
        key = validation_key("KEY-1")
        exported = client.store.export_entry(key)
        signed = json.loads(exported["signed_payload"])
        signed["data"]["license"]["features"]["enterprise"] = True
        exported["signed_payload"] = json.dumps(signed)
        client.store.import_entry(key, exported)

        state = await client.resolve_license_state("KEY-1")

    assert len(transport.calls) == 2
    assert state.state is EntitlementStatus.INVALID
    assert state.allows("enterprise") is False


@pytest.mark.asyncio
async def test_context_mismatch_forces_revalidation(make_client, transport, sign) -> None:
    transport.queue(sign(validation_body(hardware_id="hw-1")), sign(validation_body(hardware_id="hw-2")))

    async with make_client(cache_ttl=3600) as client:
        await client.resolve_license_state("KEY-1", hardware_id="hw-1")
        state = await client.resolve_license_state("KEY-1", hardware_id="hw-2")

    assert len(transport.calls) == 2
    assert state.entitlement.context_binding == context_hash("hw-2")
    assert transport.calls[1][2] == {"license_key": "KEY-1", "hardware_id": "hw-2"}


@pytest.mark.asyncio
@pytest.mark.parametrize("license_key", ["", "   "])
async def test_empty_license_key_rejected_before_io(make_client, transport, license_key: str) -> None:
    async with make_client() as client:
        with pytest.raises(LicenseValidationError):
            await client.resolve_license_state(license_key)

    assert transport.calls == []


@pytest.mark.asyncio
async def test_get_license_state_never_raises(make_client, transport) -> None:
    transport.queue(_offline())

    async with make_client() as client:
        state = await client.get_license_state("KEY-1")
        empty = await client.get_license_state("")

    assert state.state is EntitlementStatus.RESTRICTED
    assert state.is_valid is False
    assert "connection refused" in state.metadata["reason"]
    assert empty.state is EntitlementStatus.RESTRICTED
    assert client.store.get_stats()["total"] == 0


@pytest.mark.asyncio
async def test_require_capability(make_client, transport, sign) -> None:
    transport.queue(sign(validation_body(status="suspended")))

    async with make_client() as client:
        with pytest.raises(LicenseStateError) as exc_info:
            await client.require_capability("KEY-1", "updates")

    assert exc_info.value.capability == "updates"
    assert exc_info.value.state == "INVALID"
    assert exc_info.value.code == "INVALID_STATE"


@pytest.mark.asyncio
async def test_is_feature_allowed(make_client, transport, sign) -> None:
    transport.queue(sign(validation_body(features={"sso": True, "audit": False})))

    async with make_client(cache_ttl=3600) as client:
        assert await client.is_feature_allowed("KEY-1", "sso") is True
        assert await client.is_feature_allowed("KEY-1", "audit") is False


@pytest.mark.asyncio
async def test_check_feature_is_cached_per_feature(make_client, transport, sign) -> None:
    transport.queue(sign({"feature": "seats", "enabled": True, "value": 50}))

    async with make_client(cache_ttl=3600) as client:
        first = await client.check_feature("KEY 1", "seats")
        second = await client.check_feature("KEY 1", "seats")

    assert first.get_feature_value("seats") == 50
    assert second.get_feature_value("seats") == 50
    assert len(transport.calls) == 1
    assert transport.calls[0][:2] == ("GET", "/v1/licenses/KEY%201/features/seats")
    assert client.store.has(feature_key("KEY 1", "seats"))


@pytest.mark.asyncio
async def test_activate_license(make_client, transport, sign) -> None:
    transport.queue(
        sign(validation_body()),
        sign({"success": True, "activation": {"hardware_id": "hw-1", "activated_at": NOW}}),
    )

    async with make_client(cache_ttl=3600) as client:
        await client.resolve_license_state("KEY-1")
        state = await client.activate_license("KEY-1", hardware_id="hw-1", idempotency_key="idem-1")

    assert state.is_active is True
    assert state.verify_context("hw-1") is True
    method, endpoint, payload, headers = transport.calls[1]
    assert (method, endpoint) == ("POST", "/v1/activate")
    assert payload == {"license_key": "KEY-1", "hardware_id": "hw-1"}
    assert headers == {"Idempotency-Key": "idem-1"}
    assert client.store.get_stats()["total"] == 0


@pytest.mark.asyncio
async def test_activate_requires_identity(make_client, transport) -> None:
    async with make_client() as client:
        with pytest.raises(LicenseValidationError):
            await client.activate_license("KEY-1")

    assert transport.calls == []


@pytest.mark.asyncio
async def test_deactivate_clears_cached_state(make_client, transport, sign) -> None:
    transport.queue(sign(validation_body()), {"success": True})

    async with make_client(cache_ttl=3600) as client:
        await client.resolve_license_state("KEY-1")
        result = await client.deactivate_license("KEY-1", domain="example.com")

    assert result == {"success": True}
    assert client.store.get_stats()["total"] == 0
    assert transport.calls[1][3]["Idempotency-Key"]


@pytest.mark.asyncio
async def test_client_requires_context_manager(public_key_pem) -> None:
    client = LicenseClient(LicenseConfig(api_key="sk_test", public_key=public_key_pem))

    with pytest.raises(LicenseError, match="not initialized"):
        await client.resolve_license_state("KEY-1")


def test_offline_license_validation(make_client, sign, clock: FakeClock) -> None:
    client = make_client()
    document = sign({"license": {"key": "KEY-1", "hardware_id": "hw-1", "expires_at": NOW + DAY}})

    result = client.validate_offline_license(json.dumps(document), hardware_id="hw-1")
    assert result.valid is True
    assert result.errors == []

    mismatch = client.validate_offline_license(document, hardware_id="hw-2")
    assert mismatch.valid is False
    assert mismatch.errors == ["Hardware ID mismatch"]

    clock.advance(2 * DAY + 1)
    expired = client.validate_offline_license(document)
    assert expired.errors == ["License has expired"]


def test_offline_license_within_expiry_tolerance(make_client, sign, clock: FakeClock) -> None:
    client = make_client()
    document = sign({"license": {"key": "KEY-1", "expires_at": NOW}})

    clock.advance(12 * 3600)
    assert client.validate_offline_license(document).valid is True


def test_offline_license_tampered(make_client, sign) -> None:
    client = make_client()
    document = sign({"license": {"key": "KEY-1", "seats": 5}})
    document["license"]["seats"] = 500

    result = client.validate_offline_license(document)

    assert result.valid is False
    assert result.errors == ["Signature verification failed"]


def test_offline_license_malformed_input(make_client) -> None:
    client = make_client()

    with pytest.raises(LicenseValidationError):
        client.validate_offline_license("{oops")
    with pytest.raises(LicenseValidationError):
        client.validate_offline_license({"license": {"key": "KEY-1"}})


def test_offline_license_requires_public_key(transport) -> None:
    client = LicenseClient(LicenseConfig(api_key="sk_test"), transport=transport)

    with pytest.raises(LicenseValidationError, match="Public key"):
        client.validate_offline_license({"license": {}, "signature": "abc"})


@pytest.mark.asyncio
async def test_non_finite_response_yields_restricted_state(make_client, transport) -> None:
    body = validation_body()
    body["data"]["license"]["metadata"] = {"score": float("nan")}
    transport.queue(body)

    async with make_client() as client:
        state = await client.get_license_state("KEY-1")

    assert state.state is EntitlementStatus.RESTRICTED
    assert client.store.get_stats()["total"] == 0


@pytest.mark.asyncio
async def test_default_config_serves_grace_after_revalidation_interval(
    public_key_pem, transport, sign, clock: FakeClock
) -> None:
    transport.queue(sign(validation_body()), _offline(), _offline())
    client = LicenseClient(LicenseConfig(api_key="sk_test", public_key=public_key_pem), transport=transport, clock=clock)

    async with client:
        await client.resolve_license_state("KEY-1")
        clock.advance(DAY + 3600)
        grace = await client.resolve_license_state("KEY-1")
        clock.advance(2 * DAY)
        with pytest.raises(LicenseNetworkError):
            await client.resolve_license_state("KEY-1")

    assert grace.state is EntitlementStatus.GRACE
    assert grace.is_valid is True
    assert len(transport.calls) == 3


def test_offline_license_with_non_finite_number_reports_error(make_client) -> None:
    client = make_client()

    result = client.validate_offline_license('{"license": {"seats": NaN}, "signature": "c2ln"}')

    assert result.valid is False
    assert result.errors[0].startswith("Signature verification error")
