"""Client runtime description: capabilities and request metadata."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from http.cookies import SimpleCookie
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from visitrack.geo.position import GeolocationProvider, PermissionsProvider

__all__ = ["ClientEnvironment", "consent_cookie"]

CONSENT_COOKIE_NAME = "cookieConsent"


@dataclass
class ClientEnvironment:
    """Everything the tracker needs to know about the visitor's runtime.

    ``geolocation`` / ``permissions`` are None when the runtime lacks the
    capability. ``cookie_sink`` receives Set-Cookie style strings.
    """

    user_agent: str = ""
    language: str = "en-US"
    path: str = "/"
    referrer: str = ""
    timezone: str = "UTC"
    geolocation: GeolocationProvider | None = None
    permissions: PermissionsProvider | None = None
    cookie_sink: Callable[[str], None] | None = None
    cookies: list[str] = field(default_factory=list)

    def write_cookie(self, cookie: str) -> None:
        self.cookies.append(cookie)
        if self.cookie_sink is not None:
            self.cookie_sink(cookie)


def consent_cookie(consent: bool, now: datetime | None = None, days: int = 365) -> str:
    """Render the mirrored consent cookie for server-side visibility."""
    expires = (now or datetime.now(UTC)) + timedelta(days=days)
    jar: SimpleCookie = SimpleCookie()
    jar[CONSENT_COOKIE_NAME] = "true" if consent else "false"
    morsel = jar[CONSENT_COOKIE_NAME]
    morsel["expires"] = expires.strftime("%a, %d %b %Y %H:%M:%S GMT")
    morsel["path"] = "/"
    morsel["samesite"] = "Lax"
    return morsel.OutputString()
