"""Wire and domain types shared by the tracker, the flow and the API client."""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "HARD_STOP_STATUSES",
    "ContactData",
    "LocationData",
    "LocationStatus",
    "TrackResponse",
    "VisitorSession",
    "normalize_phone",
]

PHONE_RE = re.compile(r"^\+?[1-9]\d{0,15}$")
_PHONE_NOISE_RE = re.compile(r"[\s\-()]")
_MIN_PHONE_DIGITS = 7


class LocationStatus(str, Enum):
    """Terminal outcome of one location permission attempt."""

    GRANTED = "granted"
    DENIED = "denied"
    UNSUPPORTED = "unsupported"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    ERROR = "error"


# No automatic prompting after one of these
HARD_STOP_STATUSES = frozenset(
    {LocationStatus.DENIED, LocationStatus.ERROR, LocationStatus.UNSUPPORTED}
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VisitorSession(_CamelModel):
    """Backend view of the current visitor. Read-only on the client."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    has_session: bool = False
    visit_id: str | None = None
    cookie_consent: bool = False
    session_id: str = ""

    @classmethod
    def anonymous(cls) -> VisitorSession:
        """Safe default used whenever the backend cannot be asked."""
        return cls(has_session=False, visit_id=None, cookie_consent=False, session_id="")


class TrackResponse(_CamelModel):
    visit_id: str | None = None


class LocationData(_CamelModel):
    """One geolocation reading, enriched in place by the reverse geocoder."""

    latitude: float | None = None
    longitude: float | None = None
    accuracy: float | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    timezone: str | None = None

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, exclude_none=True)


def normalize_phone(value: str) -> str:
    """Strip spaces, dashes and parentheses from user phone input."""
    return _PHONE_NOISE_RE.sub("", value.strip())


class ContactData(_CamelModel):
    """Contact details submitted once from the phone modal."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    phone_number: str = Field(min_length=1)
    name: str | None = None
    email: str | None = None
    country_code: str | None = None
    consent_given: bool | None = None

    @field_validator("phone_number")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        phone = normalize_phone(value)
        digits = phone.lstrip("+")
        if not PHONE_RE.match(phone) or len(digits) < _MIN_PHONE_DIGITS:
            msg = "Please enter a valid phone number"
            raise ValueError(msg)
        return phone

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, exclude_none=True)
