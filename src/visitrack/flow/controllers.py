"""Renderer-agnostic controllers for the consent and lead-capture prompts.

Each controller exposes what a view needs (visibility, current step, field
errors) plus the user actions. Timers run on a per-controller Scheduler
that ``unmount()`` cancels.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from visitrack.contact import ContactValidationError, build_contact, validate_contact_form
from visitrack.flow.machine import (
    Completed,
    CookieDecision,
    CookieStep,
    FlowEvent,
    FlowState,
    InvalidTransition,
    LocationAttempted,
    LocationSkipped,
    LocationStep,
    entry_state,
    transition,
)
from visitrack.tracking.scheduler import Scheduler

if TYPE_CHECKING:
    from visitrack.models import ContactData, VisitorSession
    from visitrack.settings import Settings
    from visitrack.tracking.coordinator import VisitorTracker

__all__ = [
    "ConsentFlowController",
    "CookieBannerController",
    "LocationPromptController",
    "PhoneModalController",
    "TrackingManager",
]

logger = logging.getLogger(__name__)

LOCATION_FAILED_MESSAGE = (
    "Location access was denied or unavailable. "
    "You can enable it later in your browser settings."
)
LOCATION_ERROR_MESSAGE = "Failed to access location. Please check your browser settings and try again."


# ---------------------------------------------------------------------------
# Consent flow (cookie -> location -> completed stepper)
# ---------------------------------------------------------------------------


class ConsentFlowController:
    """Drives the consent stepper over the pure state machine."""

    def __init__(
        self,
        tracker: VisitorTracker,
        settings: Settings,
        on_complete: Callable[[], None] | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._tracker = tracker
        self._settings = settings
        self._on_complete = on_complete
        self._scheduler = scheduler or Scheduler()
        self.state: FlowState = CookieStep()
        self.visible = False
        self.is_loading = False
        self._completion_fired = False

    def mount(self) -> None:
        """Run the entry decision; previously resolved steps are not replayed."""
        try:
            entry = entry_state(self._tracker.flags())
        except Exception:
            logger.exception("Error checking consent status")
            self.state = CookieStep()
            self.visible = True
            return
        self.state = entry.state
        self.visible = entry.visible

    def unmount(self) -> None:
        self._scheduler.cancel_all()

    def _require(self, step: type, event: FlowEvent) -> None:
        if not isinstance(self.state, step):
            raise InvalidTransition(self.state, event)

    def _advance(self, event: FlowEvent) -> None:
        self.state = transition(self.state, event)
        if isinstance(self.state, Completed):
            self._scheduler.schedule(
                self._settings.completion_display_seconds,
                self._finish,
                name="consent-flow-hide",
            )

    def _finish(self) -> None:
        self.visible = False
        if self._completion_fired:
            return
        self._completion_fired = True
        if self._on_complete is not None:
            self._on_complete()

    async def choose_cookies(self, accept: bool) -> None:
        self._require(CookieStep, CookieDecision(accepted=accept))
        self.is_loading = True
        try:
            await self._tracker.handle_cookie_consent(accept)
            self._advance(CookieDecision(accepted=accept))
        finally:
            self.is_loading = False

    async def accept_cookies(self) -> None:
        await self.choose_cookies(True)

    async def decline_cookies(self) -> None:
        await self.choose_cookies(False)

    async def allow_location(self) -> None:
        """Attempt acquisition; the flow completes whatever the outcome."""
        self._require(LocationStep, LocationAttempted(granted=False))
        self.is_loading = True
        try:
            granted = await self._tracker.request_location_permission()
        except Exception:
            logger.exception("Error handling location permission")
            granted = False
        finally:
            self.is_loading = False
        self._advance(LocationAttempted(granted=granted))

    def skip_location(self) -> None:
        self._require(LocationStep, LocationSkipped())
        self._tracker.mark_location_requested()
        self._advance(LocationSkipped())


# ---------------------------------------------------------------------------
# Cookie banner
# ---------------------------------------------------------------------------


class CookieBannerController:
    """Stand-alone consent banner.

    Hidden once consent was accepted locally; an explicit prior decline
    shows it again so the visitor can change their mind.
    """

    def __init__(
        self,
        tracker: VisitorTracker,
        on_consent_change: Callable[[bool], None] | None = None,
    ) -> None:
        self._tracker = tracker
        self._on_consent_change = on_consent_change
        self.visible = False
        self.is_loading = False

    async def mount(self) -> None:
        local = self._tracker.flags().cookie_consent
        if local is True:
            self.visible = False
        elif local is None:
            session = await self._tracker.get_session()
            self.visible = not session.cookie_consent
        else:
            self.visible = True

    async def _decide(self, consent: bool) -> None:
        self.is_loading = True
        try:
            await self._tracker.handle_cookie_consent(consent)
            self.visible = False
            if self._on_consent_change is not None:
                self._on_consent_change(consent)
        finally:
            self.is_loading = False

    async def accept(self) -> None:
        await self._decide(True)

    async def decline(self) -> None:
        await self._decide(False)


# ---------------------------------------------------------------------------
# Location prompt
# ---------------------------------------------------------------------------


class LocationPromptController:
    """Explains the location request; closes on success, shows an error otherwise."""

    def __init__(
        self,
        on_allow: Callable[[], Awaitable[bool]],
        on_deny: Callable[[], None] | None = None,
    ) -> None:
        self._on_allow = on_allow
        self._on_deny = on_deny
        self.is_open = False
        self.is_requesting = False
        self.error: str | None = None

    def open(self) -> None:
        self.is_open = True

    def close(self) -> None:
        self.is_open = False

    async def allow(self) -> bool:
        self.is_requesting = True
        self.error = None
        try:
            success = await self._on_allow()
        except Exception:
            logger.warning("Location allow handler failed", exc_info=True)
            self.error = LOCATION_ERROR_MESSAGE
            return False
        finally:
            self.is_requesting = False
        if success:
            self.close()
        else:
            self.error = LOCATION_FAILED_MESSAGE
        return success

    def deny(self) -> None:
        if self._on_deny is not None:
            self._on_deny()
        self.close()


# ---------------------------------------------------------------------------
# Phone modal
# ---------------------------------------------------------------------------


class PhoneModalController:
    """Contact form with inline validation; submission blocked until valid."""

    FIELDS = ("name", "phone_number", "email")

    def __init__(self, on_submit: Callable[[ContactData], Awaitable[None]]) -> None:
        self._on_submit = on_submit
        self.is_open = False
        self.is_submitting = False
        self.values: dict[str, str] = dict.fromkeys(self.FIELDS, "")
        self.errors: dict[str, str] = {}

    def open(self) -> None:
        self.is_open = True

    def close(self) -> None:
        self.is_open = False

    def set_field(self, field: str, value: str) -> None:
        if field not in self.FIELDS:
            raise KeyError(field)
        self.values[field] = value
        self.errors.pop(field, None)

    def validate(self) -> bool:
        self.errors = validate_contact_form(
            self.values["name"], self.values["phone_number"], self.values["email"]
        )
        return not self.errors

    async def submit(self) -> bool:
        if not self.validate():
            return False
        self.is_submitting = True
        try:
            contact = build_contact(
                self.values["name"], self.values["phone_number"], self.values["email"]
            )
            await self._on_submit(contact)
        except ContactValidationError as exc:
            self.errors = exc.errors
            return False
        except Exception:
            logger.exception("Error submitting contact data")
            return False
        finally:
            self.is_submitting = False
        self.values = dict.fromkeys(self.FIELDS, "")
        self.errors = {}
        return True


# ---------------------------------------------------------------------------
# Tracking manager (timed triggers)
# ---------------------------------------------------------------------------


class TrackingManager:
    """Decides when the location prompt and the phone modal appear.

    Location prompt: shortly after mount for consented visitors who were
    never asked. Phone modal: after enough minutes on site or on a trigger
    page, never on top of the location prompt, and again a little after
    the visitor turns location down.
    """

    def __init__(
        self,
        tracker: VisitorTracker,
        settings: Settings,
        path: str = "/",
        scheduler: Scheduler | None = None,
    ) -> None:
        self._tracker = tracker
        self._settings = settings
        self._path = path
        self._scheduler = scheduler or Scheduler()
        self.session: VisitorSession | None = None
        self.time_on_site = 0  # minutes
        self.location_prompt = LocationPromptController(
            on_allow=self.handle_location_allow,
            on_deny=self.handle_location_deny,
        )
        self.phone_modal = PhoneModalController(on_submit=self.handle_phone_submit)
        self._location_timer_pending = False
        self._phone_timer_pending = False

    @property
    def _consented(self) -> bool:
        return bool(self.session and self.session.cookie_consent)

    async def mount(self) -> None:
        self.session = await self._tracker.get_session()
        if self.session.has_session and self.session.cookie_consent:
            await self._tracker.initialize()
        self._scheduler.schedule(60, self._tick, name="time-on-site")
        self.evaluate()

    def unmount(self) -> None:
        self._scheduler.cancel_all()
        self._location_timer_pending = False
        self._phone_timer_pending = False

    def _tick(self) -> None:
        self.time_on_site += 1
        self._scheduler.schedule(60, self._tick, name="time-on-site")
        self.evaluate()

    def navigate(self, path: str) -> None:
        self._path = path
        self.evaluate()

    def evaluate(self) -> None:
        """Re-check both triggers against the current state."""
        if not self._consented:
            return

        if (
            not self._tracker.is_location_permission_requested()
            and not self.location_prompt.is_open
            and not self._location_timer_pending
        ):
            self._location_timer_pending = True
            self._scheduler.schedule(
                self._settings.location_prompt_display_delay,
                self._show_location_prompt,
                name="location-prompt",
            )

        if self._tracker.is_phone_number_collected() or self.phone_modal.is_open:
            return
        by_time = self.time_on_site >= self._settings.phone_trigger_minutes
        by_page = self._path in self._settings.phone_trigger_pages
        if (by_time or by_page) and not self._phone_timer_pending:
            self._phone_timer_pending = True
            self._scheduler.schedule(
                self._settings.phone_modal_delay,
                self._show_phone_modal,
                name="phone-modal",
            )

    def _show_location_prompt(self) -> None:
        self._location_timer_pending = False
        if not self._tracker.is_location_permission_requested():
            self.location_prompt.open()

    def _show_phone_modal(self) -> None:
        self._phone_timer_pending = False
        if self.location_prompt.is_open or self._tracker.is_phone_number_collected():
            return
        self.phone_modal.open()

    async def handle_location_allow(self) -> bool:
        try:
            return await self._tracker.request_location_permission()
        except Exception:
            logger.exception("Error requesting location permission")
            return False

    def handle_location_deny(self) -> None:
        self._tracker.mark_location_requested()
        if self._tracker.is_phone_number_collected() or self.phone_modal.is_open:
            return
        self._scheduler.schedule(
            self._settings.phone_after_deny_delay,
            self._show_phone_modal,
            name="phone-modal-after-deny",
        )

    async def handle_phone_submit(self, contact: ContactData) -> None:
        await self._tracker.update_contact(contact)
        self.phone_modal.close()
