"""Persistent flag store: protocol plus implementations.

The flag store is the single source of truth for "have we already asked"
decisions. Writes are synchronous and visible to the next read in the same
process; nothing here synchronises between concurrent clients.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import redis

from visitrack.models import LocationData, LocationStatus

__all__ = [
    "ConsentFlags",
    "FlagKey",
    "FlagStoreProtocol",
    "InMemoryFlagStore",
    "RedisFlagStore",
    "read_bool",
    "write_bool",
]

logger = logging.getLogger(__name__)


class FlagKey(str, Enum):
    """Persisted keys, named as the web client stores them."""

    COOKIE_CONSENT = "cookieConsent"
    COOKIE_CONSENT_TIMESTAMP = "cookieConsentTimestamp"
    LOCATION_PERMISSION_REQUESTED = "locationPermissionRequested"
    LOCATION_PERMISSION_STATUS = "locationPermissionStatus"
    LOCATION_PERMISSION_ERROR = "locationPermissionError"
    LAST_LOCATION_UPDATE = "lastLocationUpdate"
    LAST_LOCATION_DATA = "lastLocationData"
    PHONE_NUMBER_COLLECTED = "phoneNumberCollected"
    VISITOR_SESSION_ID = "visitorSessionId"


class FlagStoreProtocol(Protocol):
    """Minimal key-value contract (localStorage semantics)."""

    def get(self, key: str) -> str | None:
        """Return the stored string or None when absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store a string value."""
        ...

    def remove(self, key: str) -> None:
        """Delete a key; missing keys are a no-op."""
        ...


def _key(key: str) -> str:
    return key.value if isinstance(key, Enum) else key


def read_bool(store: FlagStoreProtocol, key: str) -> bool:
    return store.get(key) == "true"


def write_bool(store: FlagStoreProtocol, key: str, value: bool) -> None:
    store.set(key, "true" if value else "false")


# ── In-memory implementation (dev / tests) ──────────────


class InMemoryFlagStore:
    """Flag store backed by a plain dict, no external deps."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = {_key(k): v for k, v in (initial or {}).items()}

    def get(self, key: str) -> str | None:
        return self._data.get(_key(key))

    def set(self, key: str, value: str) -> None:
        self._data[_key(key)] = str(value)

    def remove(self, key: str) -> None:
        self._data.pop(_key(key), None)

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


# ── Redis implementation ────────────────────────────────


class RedisFlagStore:
    """Flags for one visitor profile kept in a Redis hash.

    Used by headless clients (kiosks, scripted browsers) whose flags must
    survive a process restart. A client passed in directly must be created
    with ``decode_responses=True``; ``from_url`` does that.
    """

    def __init__(
        self,
        client: redis.Redis,  # type: ignore[type-arg]
        profile_id: str,
        namespace: str = "visitrack",
    ) -> None:
        self._redis = client
        self._hash = f"{namespace}:flags:{profile_id}"

    @classmethod
    def from_url(cls, url: str, profile_id: str, namespace: str = "visitrack") -> RedisFlagStore:
        client = redis.Redis.from_url(url, decode_responses=True)
        return cls(client, profile_id=profile_id, namespace=namespace)

    @property
    def hash_key(self) -> str:
        return self._hash

    def get(self, key: str) -> str | None:
        value = self._redis.hget(self._hash, _key(key))  # type: ignore[union-attr]
        return None if value is None else str(value)

    def set(self, key: str, value: str) -> None:
        self._redis.hset(self._hash, _key(key), str(value))  # type: ignore[union-attr]

    def remove(self, key: str) -> None:
        self._redis.hdel(self._hash, _key(key))  # type: ignore[union-attr]


# ── Typed view ──────────────────────────────────────────


def _parse_int(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _parse_status(raw: str | None) -> LocationStatus | None:
    if raw is None:
        return None
    try:
        return LocationStatus(raw)
    except ValueError:
        logger.warning("Ignoring unknown location status %r", raw)
        return None


def _parse_location(raw: str | None) -> LocationData | None:
    if not raw:
        return None
    try:
        return LocationData.model_validate(json.loads(raw))
    except ValueError:
        logger.warning("Ignoring malformed cached location data")
        return None


@dataclass(frozen=True)
class ConsentFlags:
    """Read-only snapshot of the persisted consent flags.

    ``cookie_consent`` is tri-state: None when the visitor never answered.
    """

    cookie_consent: bool | None
    cookie_consent_timestamp: int | None
    location_permission_requested: bool
    location_permission_status: LocationStatus | None
    location_permission_error: str | None
    last_location_update: int | None
    last_location_data: LocationData | None
    phone_number_collected: bool
    visitor_session_id: str | None

    @classmethod
    def load(cls, store: FlagStoreProtocol) -> ConsentFlags:
        raw_consent = store.get(FlagKey.COOKIE_CONSENT)
        return cls(
            cookie_consent=None if raw_consent is None else raw_consent == "true",
            cookie_consent_timestamp=_parse_int(store.get(FlagKey.COOKIE_CONSENT_TIMESTAMP)),
            location_permission_requested=read_bool(store, FlagKey.LOCATION_PERMISSION_REQUESTED),
            location_permission_status=_parse_status(store.get(FlagKey.LOCATION_PERMISSION_STATUS)),
            location_permission_error=store.get(FlagKey.LOCATION_PERMISSION_ERROR),
            last_location_update=_parse_int(store.get(FlagKey.LAST_LOCATION_UPDATE)),
            last_location_data=_parse_location(store.get(FlagKey.LAST_LOCATION_DATA)),
            phone_number_collected=read_bool(store, FlagKey.PHONE_NUMBER_COLLECTED),
            visitor_session_id=store.get(FlagKey.VISITOR_SESSION_ID),
        )

    @property
    def has_consented(self) -> bool:
        return self.cookie_consent is True
