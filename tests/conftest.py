"""Shared fixtures: fast settings, fake backend, tracker wiring."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from tests.fakes import BackendState, FakeGeolocation, FakePermissions, ManualClock, create_backend
from visitrack.api.client import VisitorApiClient
from visitrack.environment import ClientEnvironment
from visitrack.geo.geocoder import ReverseGeocoder
from visitrack.settings import Settings
from visitrack.storage.flag_store import InMemoryFlagStore
from visitrack.tracking.coordinator import VisitorTracker


@pytest.fixture()
def anyio_backend() -> str:
    """The library is asyncio-only; don't run async tests on other backends."""
    return "asyncio"


@pytest.fixture()
def test_settings() -> Settings:
    """Millisecond-scale delays so scheduled work runs inside a test."""
    return Settings(
        api_base_url="http://test",
        geocode_url="http://test/geocode",
        location_watchdog_seconds=0.2,
        location_prompt_delay=0.01,
        location_refresh_delay=0.01,
        contact_nudge_delay=0.02,
        completion_display_seconds=0.01,
        location_prompt_display_delay=0.01,
        phone_modal_delay=0.01,
        phone_after_deny_delay=0.01,
        log_json=False,
    )


@pytest.fixture()
def backend() -> BackendState:
    return BackendState()


@pytest.fixture()
def asgi_client(backend: BackendState) -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=create_backend(backend))
    return httpx.AsyncClient(transport=transport, base_url="http://test")


@pytest.fixture()
def api(asgi_client: httpx.AsyncClient) -> VisitorApiClient:
    return VisitorApiClient(base_url="http://test", client=asgi_client)


@pytest.fixture()
def geocoder(asgi_client: httpx.AsyncClient) -> ReverseGeocoder:
    return ReverseGeocoder(url="http://test/geocode", client=asgi_client)


@pytest.fixture()
def store() -> InMemoryFlagStore:
    return InMemoryFlagStore()


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def geolocation() -> FakeGeolocation:
    return FakeGeolocation()


@pytest.fixture()
def environment(geolocation: FakeGeolocation) -> ClientEnvironment:
    return ClientEnvironment(
        user_agent="Mozilla/5.0 (X11; Linux x86_64)",
        language="en-IN",
        path="/services",
        referrer="",
        timezone="Asia/Kolkata",
        geolocation=geolocation,
        permissions=FakePermissions("prompt"),
    )


@pytest.fixture()
def make_tracker(
    test_settings: Settings,
    store: InMemoryFlagStore,
    api: VisitorApiClient,
    environment: ClientEnvironment,
    geocoder: ReverseGeocoder,
    clock: ManualClock,
) -> Callable[..., VisitorTracker]:
    """Factory so tests can override single collaborators."""

    def _make(**overrides: Any) -> VisitorTracker:
        kwargs: dict[str, Any] = {
            "settings": test_settings,
            "store": store,
            "api": api,
            "environment": environment,
            "geocoder": geocoder,
            "clock": clock,
        }
        kwargs.update(overrides)
        return VisitorTracker(**kwargs)

    return _make
