"""HTTP transport with bounded retries for the license API."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol

import aiohttp

from pyentitlement._constants import USER_AGENT
from pyentitlement._normalize import safe_float
from pyentitlement._redact import redact_for_log
from pyentitlement.config import LicenseConfig
from pyentitlement.exceptions import LicenseApiError, LicenseNetworkError, LicenseRateLimitError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the client.

    Implementations return the parsed JSON body of a successful response and
    raise :class:`LicenseNetworkError` for transport faults or
    :class:`LicenseApiError` for application-level rejections.
    """

    async def request(
        self,
        method: str,
        endpoint: str,
        payload: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        ...


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a valid JSON number")


def _error_fields(body: Mapping[str, Any]) -> tuple[str, str]:
    error = body.get("error")
    if isinstance(error, Mapping):
        return str(error.get("message") or body.get("message") or ""), str(error.get("code") or "")
    return str(body.get("message") or error or ""), str(body.get("error_code") or body.get("code") or "")


class HttpTransport:
    """aiohttp transport that retries transport faults and honours 429.

    Retries apply to connection errors, timeouts, invalid JSON and 5xx
    responses, with a linear backoff of ``retry_delay * attempt``.  A 429
    waits for the server's ``retry_after`` (body field or ``Retry-After``
    header, falling back to ``retry_delay``) and counts as an attempt.
    Other 4xx responses raise :class:`LicenseApiError` immediately.
    """

    def __init__(
        self,
        config: LicenseConfig,
        http_session: aiohttp.ClientSession,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._http = http_session
        self._sleep = sleep

    def _build_headers(self, extra: Mapping[str, str] | None) -> dict[str, str]:
        headers = {
            "authorization": f"Bearer {self._config.api_key}",
            "accept": "application/json",
            "content-type": "application/json",
            "user-agent": USER_AGENT,
        }
        if extra:
            headers.update(extra)
        return headers

    async def _send(
        self,
        method: str,
        url: str,
        endpoint: str,
        payload: Mapping[str, Any] | None,
        headers: dict[str, str],
    ) -> tuple[int, dict[str, Any], str | None]:
        timeout = aiohttp.ClientTimeout(total=self._config.timeout)
        kwargs: dict[str, Any] = {"headers": headers, "timeout": timeout}
        if payload is not None:
            if method == "GET":
                kwargs["params"] = {k: str(v) for k, v in payload.items()}
            else:
                kwargs["data"] = json.dumps(dict(payload))

        try:
            async with self._http.request(method, url, **kwargs) as resp:
                raw = await resp.read()
                status = resp.status
                retry_after_header = resp.headers.get("Retry-After")
        except TimeoutError as exc:
            raise LicenseNetworkError(f"Request to {endpoint} timed out", endpoint=endpoint, code="TIMEOUT_ERROR") from exc
        except aiohttp.ClientError as exc:
            raise LicenseNetworkError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
                code="CONNECTION_ERROR",
            ) from exc

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise LicenseNetworkError(
                f"Response from {endpoint} is not valid UTF-8",
                status_code=status,
                endpoint=endpoint,
                code="INVALID_RESPONSE",
            ) from exc

        if not text.strip():
            return status, {}, retry_after_header
        try:
            body = json.loads(text, parse_constant=_reject_constant)
        except ValueError as exc:
            raise LicenseNetworkError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
                code="INVALID_RESPONSE",
            ) from exc
        if not isinstance(body, dict):
            raise LicenseNetworkError(
                f"Expected a JSON object from {endpoint}",
                status_code=status,
                endpoint=endpoint,
                code="INVALID_RESPONSE",
            )
        return status, body, retry_after_header

    async def request(
        self,
        method: str,
        endpoint: str,
        payload: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        method = method.upper()
        url = f"{self._config.base_url.rstrip('/')}{endpoint}"
        request_headers = self._build_headers(headers)
        attempts = self._config.retry_attempts
        last_error: LicenseNetworkError | None = None

        for attempt in range(1, attempts + 1):
            _logger.debug("%s %s attempt=%d payload=%s", method, url, attempt, redact_for_log(payload))
            try:
                status, body, retry_after_header = await self._send(method, url, endpoint, payload, request_headers)
            except LicenseNetworkError as exc:
                last_error = exc
                if attempt < attempts:
                    delay = self._config.retry_delay * attempt
                    _logger.debug("%s failed (%s), retrying in %.1fs", endpoint, exc, delay)
                    await self._sleep(delay)
                continue

            if status == 429:
                retry_after = (
                    safe_float(body.get("retry_after"))
                    or safe_float(retry_after_header)
                    or self._config.retry_delay
                )
                last_error = LicenseRateLimitError(
                    f"Rate limited by {endpoint}",
                    retry_after=retry_after,
                    endpoint=endpoint,
                )
                if attempt < attempts:
                    _logger.debug("%s rate-limited, waiting %.1fs", endpoint, retry_after)
                    await self._sleep(retry_after)
                continue

            if 200 <= status < 300:
                _logger.debug("%s -> %d %s", endpoint, status, redact_for_log(body))
                return body

            message, code = _error_fields(body)
            if status >= 500:
                last_error = LicenseNetworkError(
                    f"HTTP {status} from {endpoint}: {message}",
                    status_code=status,
                    endpoint=endpoint,
                    code=code or "SERVER_ERROR",
                )
                if attempt < attempts:
                    await self._sleep(self._config.retry_delay * attempt)
                continue

            raise LicenseApiError(
                message or f"HTTP {status} from {endpoint}",
                status_code=status,
                code=code,
                endpoint=endpoint,
                details=body,
            )

        if last_error is None:
            last_error = LicenseNetworkError(f"Request to {endpoint} failed after {attempts} attempts", endpoint=endpoint)
        raise last_error
