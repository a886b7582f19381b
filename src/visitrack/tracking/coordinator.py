"""Visitor tracker: session, cookie consent, location and contact flow."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from visitrack.api.client import BackendError
from visitrack.environment import CONSENT_COOKIE_NAME, consent_cookie
from visitrack.geo.acquirer import GeolocationAcquirer
from visitrack.geo.position import PositionOptions
from visitrack.logging import bind_visit_id, get_logger
from visitrack.models import (
    HARD_STOP_STATUSES,
    ContactData,
    LocationData,
    LocationStatus,
    VisitorSession,
)
from visitrack.storage.flag_store import ConsentFlags, FlagKey, read_bool, write_bool
from visitrack.tracking.scheduler import Scheduler

if TYPE_CHECKING:
    from visitrack.api.client import VisitorApiClient
    from visitrack.environment import ClientEnvironment
    from visitrack.geo.geocoder import ReverseGeocoder
    from visitrack.settings import Settings
    from visitrack.storage.flag_store import FlagStoreProtocol

__all__ = ["VisitorTracker"]

logger = logging.getLogger(__name__)
audit = get_logger(component="visitor_tracker")

ContactPrompt = Callable[[], Awaitable[ContactData | None]]

# Cleared on cookie opt-out
_OPT_OUT_KEYS = (
    FlagKey.VISITOR_SESSION_ID,
    FlagKey.LOCATION_PERMISSION_REQUESTED,
    FlagKey.PHONE_NUMBER_COLLECTED,
    FlagKey.LAST_LOCATION_UPDATE,
)


class VisitorTracker:
    """Mediates between persisted flags, the visitor backend and the geolocation API.

    Constructed once by the application root. The two in-memory mirrors
    (location requested, phone collected) are hydrated from the flag store
    here and rewritten alongside every store mutation.
    """

    def __init__(
        self,
        settings: Settings,
        store: FlagStoreProtocol,
        api: VisitorApiClient,
        environment: ClientEnvironment,
        geocoder: ReverseGeocoder | None = None,
        contact_prompt: ContactPrompt | None = None,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._store = store
        self._api = api
        self._env = environment
        self._geocoder = geocoder
        self._contact_prompt = contact_prompt
        self._scheduler = scheduler or Scheduler()
        self._clock = clock
        self._acquirer = GeolocationAcquirer(
            store=store,
            environment=environment,
            submit=self.update_location,
            geocoder=geocoder,
            options=PositionOptions(
                enable_high_accuracy=True,
                timeout_ms=settings.location_request_timeout_ms,
                maximum_age_ms=settings.location_maximum_age_ms,
            ),
            watchdog_seconds=settings.location_watchdog_seconds,
            clock=clock,
        )
        self._phone_collected = read_bool(store, FlagKey.PHONE_NUMBER_COLLECTED)

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # -- session ------------------------------------------------------------

    async def get_session(self) -> VisitorSession:
        """Current backend session; the anonymous default on any failure."""
        try:
            return await self._api.get_session()
        except BackendError as exc:
            logger.error("Error getting visitor session: %s", exc)
        except Exception:
            logger.exception("Unexpected error getting visitor session")
        return VisitorSession.anonymous()

    # -- consent ------------------------------------------------------------

    def _track_payload(self, consent: bool, timestamp: int) -> dict[str, Any]:
        return {
            "consent": consent,
            "timestamp": timestamp,
            "userAgent": self._env.user_agent,
            "language": self._env.language,
            "path": self._env.path,
            "referrer": self._env.referrer or "direct",
        }

    async def handle_cookie_consent(self, consent: bool) -> None:
        """Persist a consent decision, mirror it to a cookie and report it.

        Opting out resets every derived flag; opting in runs initialize().
        """
        try:
            timestamp = self._now_ms()
            write_bool(self._store, FlagKey.COOKIE_CONSENT, consent)
            self._store.set(FlagKey.COOKIE_CONSENT_TIMESTAMP, str(timestamp))

            cookie = consent_cookie(
                consent,
                now=datetime.fromtimestamp(timestamp / 1000, tz=UTC),
                days=self._settings.consent_cookie_days,
            )
            self._env.write_cookie(cookie)
            self._api.set_cookie(CONSENT_COOKIE_NAME, "true" if consent else "false")

            try:
                response = await self._api.track(self._track_payload(consent, timestamp))
                if response.visit_id:
                    self._store.set(FlagKey.VISITOR_SESSION_ID, response.visit_id)
                    bind_visit_id(response.visit_id)
            except BackendError as exc:
                logger.error("Error sending consent to backend: %s", exc)

            audit.info("cookie_consent_recorded", consent=consent)

            if consent:
                await self.initialize()
            else:
                self._opt_out()
        except Exception:
            logger.exception("Error handling cookie consent")

    def _opt_out(self) -> None:
        for key in _OPT_OUT_KEYS:
            self._store.remove(key)
        self._acquirer.reset()
        self._phone_collected = False
        self._scheduler.cancel_all()
        bind_visit_id(None)

    # -- initialize ---------------------------------------------------------

    def _location_is_stale(self, flags: ConsentFlags) -> bool:
        if flags.last_location_update is None:
            return True
        elapsed_ms = self._now_ms() - flags.last_location_update
        return elapsed_ms > self._settings.location_refresh_seconds * 1000

    async def initialize(self) -> None:
        """Hydrate from storage and schedule location and contact prompts.

        No-op unless both local storage and the backend agree consent exists.
        """
        try:
            if not read_bool(self._store, FlagKey.COOKIE_CONSENT):
                return

            session = await self.get_session()
            if not session.has_session or not session.cookie_consent:
                return

            flags = ConsentFlags.load(self._store)
            self._acquirer.sync_from_store()
            self._phone_collected = flags.phone_number_collected
            if flags.visitor_session_id:
                bind_visit_id(flags.visitor_session_id)

            status = flags.location_permission_status
            if not flags.location_permission_requested and status not in HARD_STOP_STATUSES:
                self._scheduler.schedule_once(
                    self._settings.location_prompt_delay,
                    self.request_location_permission,
                    name="location-request",
                )
            elif status is LocationStatus.GRANTED and self._location_is_stale(flags):
                self._scheduler.schedule_once(
                    self._settings.location_refresh_delay,
                    lambda: self.request_location_permission(refresh=True),
                    name="location-refresh",
                )

            if not self._phone_collected:
                self._scheduler.schedule_once(
                    self._settings.contact_nudge_delay,
                    self._contact_nudge,
                    name="contact-nudge",
                )
        except Exception:
            logger.exception("Error initializing visitor tracking")

    async def _contact_nudge(self) -> None:
        if self._phone_collected or self._contact_prompt is None:
            return
        contact = await self._contact_prompt()
        if contact is not None and not self._phone_collected:
            await self.update_contact(contact)

    # -- location -----------------------------------------------------------

    async def request_location_permission(self, *, refresh: bool = False) -> bool:
        return await self._acquirer.request_permission(refresh=refresh)

    def mark_location_requested(self) -> None:
        """Record that the visitor was asked, without acquiring (skip/deny)."""
        self._acquirer.mark_requested()

    async def update_location(self, location: LocationData) -> bool:
        try:
            return await self._api.update_location(location)
        except BackendError as exc:
            logger.error("Error updating location: %s", exc)
            return False

    # -- contact ------------------------------------------------------------

    async def update_contact(self, contact: ContactData) -> bool:
        try:
            success = await self._api.update_contact(contact)
        except BackendError as exc:
            logger.error("Error updating contact: %s", exc)
            return False
        if success:
            self._phone_collected = True
            write_bool(self._store, FlagKey.PHONE_NUMBER_COLLECTED, True)
            audit.info("contact_collected")
        return success

    # -- queries ------------------------------------------------------------

    def is_location_permission_requested(self) -> bool:
        return self._acquirer.requested

    def is_phone_number_collected(self) -> bool:
        return self._phone_collected

    def flags(self) -> ConsentFlags:
        return ConsentFlags.load(self._store)

    async def close(self) -> None:
        """Cancel pending prompts and release HTTP clients."""
        self._scheduler.cancel_all()
        await self._api.close()
        if self._geocoder is not None:
            await self._geocoder.close()
