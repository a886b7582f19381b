"""Application settings via environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["Settings"]


class Settings(BaseSettings):
    """Central configuration; every value can come from the environment."""

    model_config = SettingsConfigDict(env_prefix="VISITRACK_")

    # Backend REST API
    api_base_url: str = "http://localhost:5000/api"
    api_timeout: float = 10.0

    # Reverse geocoding
    geocode_url: str = "https://api.bigdatacloud.net/data/reverse-geocode-client"
    geocode_timeout: float = 5.0
    geocode_language: str = "en"

    # Geolocation request
    location_request_timeout_ms: int = 12_000
    location_maximum_age_ms: int = 300_000
    location_watchdog_seconds: float = 15.0
    location_refresh_seconds: int = 3600

    # Coordinator scheduling (seconds)
    location_prompt_delay: float = 2.0
    location_refresh_delay: float = 1.0
    contact_nudge_delay: float = 10.0

    # Consent cookie
    consent_cookie_days: int = 365

    # UI flow timing
    completion_display_seconds: float = 1.5
    location_prompt_display_delay: float = 1.5
    phone_trigger_minutes: int = 5
    phone_trigger_pages: list[str] = Field(default_factory=lambda: ["/contact", "/enquiry"])
    phone_modal_delay: float = 3.0
    phone_after_deny_delay: float = 5.0

    # Flag store
    redis_url: str = ""
    flag_namespace: str = "visitrack"

    # Logging
    log_json: bool = True
    log_level: str = "INFO"
