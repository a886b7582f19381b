"""Tests for the flow controllers (stepper, banner, prompts, manager)."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.fakes import BackendState, FakeGeolocation
from visitrack.flow.controllers import (
    LOCATION_ERROR_MESSAGE,
    LOCATION_FAILED_MESSAGE,
    ConsentFlowController,
    CookieBannerController,
    LocationPromptController,
    PhoneModalController,
    TrackingManager,
)
from visitrack.flow.machine import (
    Completed,
    CookieChoice,
    CookieStep,
    InvalidTransition,
    LocationOutcome,
    LocationStep,
)
from visitrack.settings import Settings
from visitrack.storage.flag_store import InMemoryFlagStore
from visitrack.tracking.coordinator import VisitorTracker

TrackerFactory = Callable[..., VisitorTracker]


class TestConsentFlowController:
    @pytest.mark.anyio()
    async def test_fresh_visitor_accepts_then_skips_location(
        self,
        make_tracker: TrackerFactory,
        test_settings: Settings,
        store: InMemoryFlagStore,
    ) -> None:
        on_complete = MagicMock()
        tracker = make_tracker()
        flow = ConsentFlowController(tracker, test_settings, on_complete=on_complete)

        flow.mount()
        assert flow.visible
        assert flow.state == CookieStep()

        await flow.accept_cookies()
        tracker.scheduler.cancel_all()
        assert flow.state == LocationStep()
        assert store.get("cookieConsent") == "true"

        flow.skip_location()
        assert flow.state == Completed(cookie=CookieChoice.ACCEPTED, location=LocationOutcome.SKIPPED)
        assert store.get("locationPermissionRequested") == "true"
        assert flow.visible

        await flow._scheduler.drain()
        assert not flow.visible
        on_complete.assert_called_once_with()

    @pytest.mark.anyio()
    async def test_decline_completes_without_location(
        self, make_tracker: TrackerFactory, test_settings: Settings, geolocation: FakeGeolocation
    ) -> None:
        flow = ConsentFlowController(make_tracker(), test_settings)
        flow.mount()
        await flow.decline_cookies()
        assert flow.state == Completed(cookie=CookieChoice.DECLINED, location=LocationOutcome.NOT_ASKED)
        assert geolocation.calls == []

    @pytest.mark.anyio()
    async def test_allow_location_completes_with_outcome(
        self, make_tracker: TrackerFactory, test_settings: Settings, store: InMemoryFlagStore
    ) -> None:
        store.set("cookieConsent", "true")
        flow = ConsentFlowController(make_tracker(), test_settings)
        flow.mount()
        assert flow.state == LocationStep()

        await flow.allow_location()
        assert isinstance(flow.state, Completed)
        assert flow.state.location is LocationOutcome.GRANTED
        assert store.get("locationPermissionStatus") == "granted"

    @pytest.mark.anyio()
    async def test_failed_location_still_completes(
        self, make_tracker: TrackerFactory, test_settings: Settings, store: InMemoryFlagStore
    ) -> None:
        store.set("cookieConsent", "true")
        tracker = make_tracker()
        tracker.request_location_permission = AsyncMock(side_effect=RuntimeError("boom"))  # type: ignore[method-assign]
        flow = ConsentFlowController(tracker, test_settings)
        flow.mount()

        await flow.allow_location()
        assert isinstance(flow.state, Completed)
        assert flow.state.location is LocationOutcome.DENIED

    def test_resolved_visitor_never_sees_the_flow(
        self, make_tracker: TrackerFactory, test_settings: Settings, store: InMemoryFlagStore
    ) -> None:
        store.set("cookieConsent", "true")
        store.set("locationPermissionStatus", "granted")
        flow = ConsentFlowController(make_tracker(), test_settings)
        flow.mount()
        assert not flow.visible
        with pytest.raises(InvalidTransition):
            flow.skip_location()

    @pytest.mark.anyio()
    async def test_location_actions_rejected_on_cookie_step(
        self, make_tracker: TrackerFactory, test_settings: Settings, geolocation: FakeGeolocation
    ) -> None:
        flow = ConsentFlowController(make_tracker(), test_settings)
        flow.mount()
        with pytest.raises(InvalidTransition):
            await flow.allow_location()
        with pytest.raises(InvalidTransition):
            flow.skip_location()
        assert flow.state == CookieStep()
        assert geolocation.calls == []

    @pytest.mark.anyio()
    async def test_unmount_cancels_completion(
        self, make_tracker: TrackerFactory, test_settings: Settings
    ) -> None:
        on_complete = MagicMock()
        flow = ConsentFlowController(make_tracker(), test_settings, on_complete=on_complete)
        flow.mount()
        await flow.decline_cookies()
        flow.unmount()
        await flow._scheduler.drain()
        on_complete.assert_not_called()

    @pytest.mark.anyio()
    async def test_remount_does_not_replay(
        self, make_tracker: TrackerFactory, test_settings: Settings
    ) -> None:
        tracker = make_tracker()
        first = ConsentFlowController(tracker, test_settings)
        first.mount()
        await first.accept_cookies()
        tracker.scheduler.cancel_all()
        first.skip_location()
        first.unmount()

        second = ConsentFlowController(tracker, test_settings)
        second.mount()
        assert not second.visible
        assert isinstance(second.state, Completed)


class TestCookieBannerController:
    @pytest.mark.anyio()
    async def test_hidden_after_local_accept(
        self, make_tracker: TrackerFactory, store: InMemoryFlagStore, backend: BackendState
    ) -> None:
        store.set("cookieConsent", "true")
        banner = CookieBannerController(make_tracker())
        await banner.mount()
        assert not banner.visible
        assert backend.calls == []

    @pytest.mark.anyio()
    async def test_prior_decline_shows_banner_again(
        self, make_tracker: TrackerFactory, store: InMemoryFlagStore
    ) -> None:
        store.set("cookieConsent", "false")
        banner = CookieBannerController(make_tracker())
        await banner.mount()
        assert banner.visible

    @pytest.mark.anyio()
    async def test_unknown_locally_asks_backend(
        self, make_tracker: TrackerFactory, backend: BackendState
    ) -> None:
        banner = CookieBannerController(make_tracker())
        await banner.mount()
        assert not banner.visible  # backend session already has consent

        backend.session = {"hasSession": False, "cookieConsent": False, "sessionId": ""}
        await banner.mount()
        assert banner.visible

    @pytest.mark.anyio()
    async def test_decision_hides_and_notifies(
        self, make_tracker: TrackerFactory, store: InMemoryFlagStore
    ) -> None:
        changes: list[bool] = []
        store.set("cookieConsent", "false")
        banner = CookieBannerController(make_tracker(), on_consent_change=changes.append)
        await banner.mount()
        await banner.decline()
        assert not banner.visible
        assert changes == [False]


class TestLocationPromptController:
    @pytest.mark.anyio()
    async def test_success_closes(self) -> None:
        prompt = LocationPromptController(on_allow=AsyncMock(return_value=True))
        prompt.open()
        assert await prompt.allow() is True
        assert not prompt.is_open
        assert prompt.error is None

    @pytest.mark.anyio()
    async def test_failure_stays_open_with_message(self) -> None:
        prompt = LocationPromptController(on_allow=AsyncMock(return_value=False))
        prompt.open()
        assert await prompt.allow() is False
        assert prompt.is_open
        assert prompt.error == LOCATION_FAILED_MESSAGE

    @pytest.mark.anyio()
    async def test_exception_shows_settings_hint(self) -> None:
        prompt = LocationPromptController(on_allow=AsyncMock(side_effect=RuntimeError("x")))
        prompt.open()
        assert await prompt.allow() is False
        assert prompt.error == LOCATION_ERROR_MESSAGE
        assert not prompt.is_requesting

    def test_deny_notifies_and_closes(self) -> None:
        on_deny = MagicMock()
        prompt = LocationPromptController(on_allow=AsyncMock(), on_deny=on_deny)
        prompt.open()
        prompt.deny()
        on_deny.assert_called_once_with()
        assert not prompt.is_open


class TestPhoneModalController:
    @pytest.mark.anyio()
    async def test_invalid_form_blocks_submission(self) -> None:
        on_submit = AsyncMock()
        modal = PhoneModalController(on_submit=on_submit)
        modal.set_field("name", "A")
        modal.set_field("phone_number", "123")
        assert await modal.submit() is False
        assert set(modal.errors) == {"name", "phone_number"}
        on_submit.assert_not_awaited()

    @pytest.mark.anyio()
    async def test_typing_clears_field_error(self) -> None:
        modal = PhoneModalController(on_submit=AsyncMock())
        assert await modal.submit() is False
        assert "name" in modal.errors
        modal.set_field("name", "Al")
        assert "name" not in modal.errors

    @pytest.mark.anyio()
    async def test_valid_submission_resets_form(self) -> None:
        on_submit = AsyncMock()
        modal = PhoneModalController(on_submit=on_submit)
        modal.set_field("name", "Al")
        modal.set_field("phone_number", "+14155551234")
        modal.set_field("email", "a@b.co")
        assert await modal.submit() is True
        contact = on_submit.await_args.args[0]
        assert contact.phone_number == "+14155551234"
        assert contact.email == "a@b.co"
        assert modal.values == {"name": "", "phone_number": "", "email": ""}

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(KeyError):
            PhoneModalController(on_submit=AsyncMock()).set_field("age", "3")


class TestTrackingManager:
    @pytest.mark.anyio()
    async def test_location_prompt_shown_for_consented_visitor(
        self, make_tracker: TrackerFactory, test_settings: Settings, store: InMemoryFlagStore
    ) -> None:
        store.set("cookieConsent", "true")
        store.set("phoneNumberCollected", "true")
        tracker = make_tracker()
        manager = TrackingManager(tracker, test_settings, path="/")
        await manager.mount()
        tracker.scheduler.cancel_all()

        assert not manager.location_prompt.is_open
        await _settle(manager)
        assert manager.location_prompt.is_open
        manager.unmount()

    @pytest.mark.anyio()
    async def test_nothing_shown_without_consent(
        self, make_tracker: TrackerFactory, test_settings: Settings, backend: BackendState
    ) -> None:
        backend.session = {"hasSession": False, "cookieConsent": False, "sessionId": ""}
        manager = TrackingManager(make_tracker(), test_settings, path="/contact")
        await manager.mount()
        await _settle(manager)
        assert not manager.location_prompt.is_open
        assert not manager.phone_modal.is_open
        manager.unmount()

    @pytest.mark.anyio()
    async def test_trigger_page_opens_phone_modal(
        self, make_tracker: TrackerFactory, test_settings: Settings, store: InMemoryFlagStore
    ) -> None:
        store.set("cookieConsent", "true")
        store.set("locationPermissionRequested", "true")
        store.set("locationPermissionStatus", "denied")
        tracker = make_tracker()
        manager = TrackingManager(tracker, test_settings, path="/")
        await manager.mount()
        tracker.scheduler.cancel_all()
        await _settle(manager)
        assert not manager.phone_modal.is_open

        manager.navigate("/enquiry")
        await _settle(manager)
        assert manager.phone_modal.is_open
        manager.unmount()

    @pytest.mark.anyio()
    async def test_time_on_site_opens_phone_modal(
        self, make_tracker: TrackerFactory, test_settings: Settings, store: InMemoryFlagStore
    ) -> None:
        store.set("cookieConsent", "true")
        store.set("locationPermissionRequested", "true")
        tracker = make_tracker()
        manager = TrackingManager(tracker, test_settings, path="/")
        await manager.mount()
        tracker.scheduler.cancel_all()

        manager.time_on_site = test_settings.phone_trigger_minutes
        manager.evaluate()
        await _settle(manager)
        assert manager.phone_modal.is_open
        manager.unmount()

    @pytest.mark.anyio()
    async def test_phone_modal_waits_for_location_prompt(
        self, make_tracker: TrackerFactory, test_settings: Settings, store: InMemoryFlagStore
    ) -> None:
        store.set("cookieConsent", "true")
        tracker = make_tracker()
        manager = TrackingManager(tracker, test_settings, path="/contact")
        await manager.mount()
        tracker.scheduler.cancel_all()
        await _settle(manager)

        assert manager.location_prompt.is_open
        assert not manager.phone_modal.is_open

        manager.location_prompt.deny()
        assert tracker.is_location_permission_requested()
        await _settle(manager)
        assert manager.phone_modal.is_open
        manager.unmount()

    @pytest.mark.anyio()
    async def test_phone_submit_records_contact(
        self,
        make_tracker: TrackerFactory,
        test_settings: Settings,
        store: InMemoryFlagStore,
        backend: BackendState,
    ) -> None:
        store.set("cookieConsent", "true")
        store.set("locationPermissionRequested", "true")
        tracker = make_tracker()
        manager = TrackingManager(tracker, test_settings, path="/contact")
        await manager.mount()
        tracker.scheduler.cancel_all()
        await _settle(manager)

        manager.phone_modal.set_field("name", "Asha")
        manager.phone_modal.set_field("phone_number", "+91 98260 12345")
        assert await manager.phone_modal.submit() is True
        assert not manager.phone_modal.is_open
        assert tracker.is_phone_number_collected()
        assert backend.bodies("/visitor/contact") == [
            {"phoneNumber": "+919826012345", "name": "Asha"}
        ]
        manager.unmount()


async def _settle(manager: TrackingManager) -> None:
    """Let short prompt timers fire; the minute ticker stays pending."""
    await asyncio.sleep(0.05)
