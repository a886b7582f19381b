"""Geolocation acquirer: permission pre-check, request, watchdog, persist."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from visitrack.geo.futures import WatchdogTimeout, callback_future, with_watchdog
from visitrack.geo.position import Position, PositionError, PositionOptions
from visitrack.models import LocationData, LocationStatus
from visitrack.storage.flag_store import FlagKey, read_bool, write_bool

if TYPE_CHECKING:
    from visitrack.environment import ClientEnvironment
    from visitrack.geo.geocoder import ReverseGeocoder
    from visitrack.storage.flag_store import FlagStoreProtocol

__all__ = ["GeolocationAcquirer", "status_for_error"]

logger = logging.getLogger(__name__)

LocationSubmitter = Callable[[LocationData], Awaitable[bool]]

_ERROR_STATUS: dict[int, tuple[LocationStatus, str]] = {
    PositionError.PERMISSION_DENIED: (LocationStatus.DENIED, "Location permission denied by user"),
    PositionError.POSITION_UNAVAILABLE: (LocationStatus.UNAVAILABLE, "Location information unavailable"),
    PositionError.TIMEOUT: (LocationStatus.TIMEOUT, "Location request timed out"),
}


def status_for_error(error: PositionError) -> tuple[LocationStatus, str]:
    """Map a platform error to (status, human-readable message)."""
    if error.code in _ERROR_STATUS:
        return _ERROR_STATUS[error.code]
    return LocationStatus.ERROR, f"Location error: {error.message}"


class GeolocationAcquirer:
    """Requests the device location once per instance and records the outcome.

    Exactly one terminal status is written per attempt. The ``requested``
    guard is hydrated from the flag store and set on every exit path, so a
    second ordinary call short-circuits to False.
    """

    def __init__(
        self,
        store: FlagStoreProtocol,
        environment: ClientEnvironment,
        submit: LocationSubmitter,
        geocoder: ReverseGeocoder | None = None,
        options: PositionOptions | None = None,
        watchdog_seconds: float = 15.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._env = environment
        self._submit = submit
        self._geocoder = geocoder
        self._options = options or PositionOptions()
        self._watchdog = watchdog_seconds
        self._clock = clock
        self._requested = read_bool(store, FlagKey.LOCATION_PERMISSION_REQUESTED)
        self._in_flight = False
        # bumped by reset(); outcomes of attempts started before it are dropped
        self._generation = 0
        self._attempt_generation = 0

    @property
    def requested(self) -> bool:
        return self._requested

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def reset(self) -> None:
        """Forget the in-memory guard (used on consent opt-out).

        An attempt still in flight runs to completion but its outcome is
        not persisted.
        """
        self._requested = False
        self._generation += 1

    def sync_from_store(self) -> None:
        self._requested = read_bool(self._store, FlagKey.LOCATION_PERMISSION_REQUESTED)

    def mark_requested(self) -> None:
        self._requested = True
        write_bool(self._store, FlagKey.LOCATION_PERMISSION_REQUESTED, True)

    def _finish(self, status: LocationStatus, error_message: str | None = None) -> bool:
        if self._attempt_generation != self._generation:
            logger.info("Discarding location outcome %s after reset", status.value)
            return False
        self.mark_requested()
        self._store.set(FlagKey.LOCATION_PERMISSION_STATUS, status.value)
        if error_message is not None:
            self._store.set(FlagKey.LOCATION_PERMISSION_ERROR, error_message)
        logger.info("Location permission outcome: %s", status.value)
        return True

    async def request_permission(self, *, refresh: bool = False) -> bool:
        """Acquire, enrich and submit the current position.

        ``refresh=True`` re-reads a previously granted location and skips the
        ``requested`` guard; an attempt already in flight always wins. A
        cancelled caller still leaves the guard set and an ``error`` status.
        """
        if self._in_flight:
            return False
        if self._requested and not refresh:
            return False

        self._in_flight = True
        self._attempt_generation = self._generation
        try:
            return await self._attempt()
        except asyncio.CancelledError:
            logger.warning("Location request cancelled before it settled")
            self._finish(LocationStatus.ERROR, "Location request cancelled")
            raise
        except Exception:
            logger.exception("Error requesting location permission")
            self._finish(LocationStatus.ERROR)
            return False
        finally:
            self._in_flight = False

    async def _attempt(self) -> bool:
        geolocation = self._env.geolocation
        if geolocation is None:
            logger.warning("Geolocation is not supported by this runtime")
            self._finish(LocationStatus.UNSUPPORTED)
            return False

        if self._env.permissions is not None:
            state = await self._env.permissions.query("geolocation")
            if state == "denied":
                logger.warning("Location permission is denied")
                self._finish(LocationStatus.DENIED)
                return False

        fut = callback_future(
            lambda ok, fail: geolocation.get_current_position(ok, fail, self._options)
        )
        try:
            position: Position = await with_watchdog(fut, self._watchdog)
        except WatchdogTimeout:
            logger.warning("Location request timed out")
            self._finish(LocationStatus.TIMEOUT)
            return False
        except PositionError as err:
            status, message = status_for_error(err)
            logger.warning(message)
            self._finish(status, message)
            return False

        return await self._handle_position(position)

    async def _handle_position(self, position: Position) -> bool:
        location = LocationData(
            latitude=position.latitude,
            longitude=position.longitude,
            accuracy=position.accuracy,
            timezone=self._env.timezone,
        )

        if self._geocoder is not None:
            try:
                await self._geocoder.enrich(location)
            except Exception:
                logger.warning("Reverse geocoding raised; continuing without address", exc_info=True)

        success = await self._submit(location)
        recorded = self._finish(LocationStatus.GRANTED if success else LocationStatus.ERROR)
        if success and recorded:
            self._store.set(FlagKey.LAST_LOCATION_UPDATE, str(int(self._clock() * 1000)))
            self._store.set(FlagKey.LAST_LOCATION_DATA, json.dumps(location.to_payload()))
        return success
