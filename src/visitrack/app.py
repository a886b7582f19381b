"""Application root: builds the tracker and its collaborators from settings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from visitrack.api.client import VisitorApiClient
from visitrack.environment import ClientEnvironment
from visitrack.geo.geocoder import ReverseGeocoder
from visitrack.logging import configure_logging
from visitrack.settings import Settings
from visitrack.storage.flag_store import InMemoryFlagStore, RedisFlagStore
from visitrack.tracking.coordinator import VisitorTracker

if TYPE_CHECKING:
    import httpx

    from visitrack.storage.flag_store import FlagStoreProtocol
    from visitrack.tracking.coordinator import ContactPrompt

__all__ = ["build_flag_store", "build_tracker"]

logger = logging.getLogger(__name__)


def build_flag_store(settings: Settings, profile_id: str = "default") -> FlagStoreProtocol:
    """Redis-backed flags when ``redis_url`` is set, in-memory otherwise."""
    if settings.redis_url:
        logger.info("Using Redis flag store for profile %s", profile_id)
        return RedisFlagStore.from_url(
            settings.redis_url, profile_id=profile_id, namespace=settings.flag_namespace
        )
    return InMemoryFlagStore()


def build_tracker(
    settings: Settings | None = None,
    environment: ClientEnvironment | None = None,
    *,
    store: FlagStoreProtocol | None = None,
    contact_prompt: ContactPrompt | None = None,
    http_client: httpx.AsyncClient | None = None,
    geocode_client: httpx.AsyncClient | None = None,
    profile_id: str = "default",
    configure_logs: bool = True,
) -> VisitorTracker:
    """Wire a VisitorTracker the way the host application owns it."""
    settings = settings or Settings()
    if configure_logs:
        configure_logging(json_output=settings.log_json, level=settings.log_level)

    api = VisitorApiClient(
        base_url=settings.api_base_url,
        timeout=settings.api_timeout,
        client=http_client,
    )
    geocoder = ReverseGeocoder(
        url=settings.geocode_url,
        language=settings.geocode_language,
        timeout=settings.geocode_timeout,
        client=geocode_client,
    )
    return VisitorTracker(
        settings=settings,
        store=store if store is not None else build_flag_store(settings, profile_id),
        api=api,
        environment=environment or ClientEnvironment(),
        geocoder=geocoder,
        contact_prompt=contact_prompt,
    )
