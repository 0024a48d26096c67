"""TTL-bounded entitlement cache with verify-on-read.

The store keeps serialized records only, never live snapshots.  Every
:meth:`StateStore.get` rebuilds a fresh :class:`EntitlementState` through
:meth:`EntitlementState.from_cache`, which re-verifies the embedded
signature.  A record that fails verification is evicted before the error
reaches the caller, so a second read is a clean miss.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pyentitlement._constants import CACHE_KEY_PREFIX, DEFAULT_CACHE_TTL
from pyentitlement._crypto.signature import SignatureVerifier
from pyentitlement.exceptions import LicenseSignatureError
from pyentitlement.models.entitlement import EntitlementState

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CachedEntry:
    """A serialized snapshot and its absolute expiry (epoch seconds)."""

    key: str
    record: dict[str, Any]
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at < now

    def to_record(self) -> dict[str, Any]:
        return {**copy.deepcopy(self.record), "expires_at": self.expires_at}


def validation_key(license_key: str) -> str:
    return f"{CACHE_KEY_PREFIX}:{license_key}:validation"


def feature_key(license_key: str, feature: str) -> str:
    return f"{CACHE_KEY_PREFIX}:{license_key}:feature:{feature}"


def license_key_prefix(license_key: str) -> str:
    return f"{CACHE_KEY_PREFIX}:{license_key}:"


class StateStore:
    """In-process cache of entitlement snapshots.

    All read-verify-evict sequences and all writes run under one lock, so the
    store is safe to share between threads.
    """

    def __init__(
        self,
        verifier: SignatureVerifier | None = None,
        *,
        default_ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._verifier = verifier
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CachedEntry] = {}
        self._lock = threading.RLock()

    def set(self, key: str, state: EntitlementState, ttl: float | None = None) -> bool:
        """Persist *state* under *key* for *ttl* seconds.

        Returns ``False`` without storing when the state cannot be verified
        on a later read: synthetic states, and unsigned states while a
        verifier is configured.
        """
        if state.is_synthetic:
            _logger.debug("Not caching synthetic %s state for %s", state.state, key)
            return False
        if self._verifier is not None and not state.signature:
            _logger.warning("Refusing to cache unsigned entitlement state for %s", key)
            return False

        effective_ttl = self._default_ttl if not ttl else ttl
        entry = CachedEntry(
            key=key,
            record=state.to_record(),
            expires_at=self._clock() + effective_ttl,
        )
        with self._lock:
            self._entries[key] = entry
        return True

    def get(self, key: str) -> EntitlementState | None:
        """Return a freshly verified snapshot, or ``None`` on a miss.

        Raises
        ------
        LicenseSignatureError
            The stored record failed verification.  It has already been
            evicted when this propagates.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            now = self._clock()
            if entry.is_expired(now):
                del self._entries[key]
                return None

            try:
                return EntitlementState.from_cache(entry.record, self._verifier, now=now)
            except LicenseSignatureError:
                del self._entries[key]
                _logger.info("Evicted cached entitlement %s after signature failure", key)
                raise

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return False
            return True

    def remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def clear_license(self, license_key: str) -> int:
        """Evict every entry for *license_key*; returns how many were removed."""
        prefix = license_key_prefix(license_key)
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def gc(self) -> int:
        """Sweep expired entries; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def get_stats(self) -> dict[str, int]:
        now = self._clock()
        with self._lock:
            expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
            total = len(self._entries)
        return {"total": total, "active": total - expired, "expired": expired}

    def export_entry(self, key: str) -> dict[str, Any] | None:
        """Persisted layout of one entry (record fields plus ``expires_at``)."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.to_record() if entry is not None else None

    def import_entry(self, key: str, data: dict[str, Any]) -> None:
        """Load a previously exported entry, e.g. from disk.

        Nothing is verified here; verification happens on the next
        :meth:`get` like for any other entry.
        """
        record = copy.deepcopy(data)
        expires_at = float(record.pop("expires_at"))
        with self._lock:
            self._entries[key] = CachedEntry(key=key, record=record, expires_at=expires_at)
