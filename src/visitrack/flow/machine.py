"""Consent flow state machine: cookie -> location -> completed.

Pure transitions, no I/O. Movement is strictly forward and ``Completed``
is terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from visitrack.models import HARD_STOP_STATUSES, LocationStatus
from visitrack.storage.flag_store import ConsentFlags

__all__ = [
    "Completed",
    "CookieChoice",
    "CookieDecision",
    "CookieStep",
    "FlowEntry",
    "FlowEvent",
    "FlowState",
    "InvalidTransition",
    "LocationAttempted",
    "LocationOutcome",
    "LocationSkipped",
    "LocationStep",
    "entry_state",
    "transition",
]


class CookieChoice(str, Enum):
    ACCEPTED = "Accepted"
    DECLINED = "Declined"


class LocationOutcome(str, Enum):
    GRANTED = "Granted"
    DENIED = "Denied"
    SKIPPED = "Skipped"
    NOT_ASKED = "Not asked"


# ── States ──────────────────────────────────────────────


@dataclass(frozen=True)
class CookieStep:
    name: str = "cookie"


@dataclass(frozen=True)
class LocationStep:
    cookie: CookieChoice = CookieChoice.ACCEPTED
    name: str = "location"


@dataclass(frozen=True)
class Completed:
    cookie: CookieChoice | None
    location: LocationOutcome
    name: str = "completed"


FlowState = Union[CookieStep, LocationStep, Completed]


# ── Events ──────────────────────────────────────────────


@dataclass(frozen=True)
class CookieDecision:
    accepted: bool


@dataclass(frozen=True)
class LocationAttempted:
    granted: bool


@dataclass(frozen=True)
class LocationSkipped:
    pass


FlowEvent = Union[CookieDecision, LocationAttempted, LocationSkipped]


class InvalidTransition(Exception):
    """Event not accepted in the current state."""

    def __init__(self, state: FlowState, event: FlowEvent) -> None:
        super().__init__(f"{type(event).__name__} not allowed in state {state.name!r}")
        self.state = state
        self.event = event


def transition(state: FlowState, event: FlowEvent) -> FlowState:
    """Next state for ``event``; raises InvalidTransition otherwise."""
    if isinstance(state, CookieStep) and isinstance(event, CookieDecision):
        if event.accepted:
            return LocationStep(cookie=CookieChoice.ACCEPTED)
        return Completed(cookie=CookieChoice.DECLINED, location=LocationOutcome.NOT_ASKED)

    if isinstance(state, LocationStep):
        if isinstance(event, LocationAttempted):
            outcome = LocationOutcome.GRANTED if event.granted else LocationOutcome.DENIED
            return Completed(cookie=state.cookie, location=outcome)
        if isinstance(event, LocationSkipped):
            return Completed(cookie=state.cookie, location=LocationOutcome.SKIPPED)

    raise InvalidTransition(state, event)


# ── Entry decision ──────────────────────────────────────

_RESOLVED_STATUSES = frozenset(
    {
        LocationStatus.GRANTED,
        LocationStatus.DENIED,
        LocationStatus.UNSUPPORTED,
        LocationStatus.TIMEOUT,
    }
)


@dataclass(frozen=True)
class FlowEntry:
    state: FlowState
    visible: bool


def _recorded_outcome(flags: ConsentFlags) -> LocationOutcome:
    status = flags.location_permission_status
    if status is LocationStatus.GRANTED:
        return LocationOutcome.GRANTED
    if status is not None:
        return LocationOutcome.DENIED
    if flags.location_permission_requested:
        return LocationOutcome.SKIPPED
    return LocationOutcome.NOT_ASKED


def entry_state(flags: ConsentFlags) -> FlowEntry:
    """Where a freshly mounted flow starts, and whether it is shown at all."""
    if not flags.has_consented:
        return FlowEntry(state=CookieStep(), visible=True)

    status = flags.location_permission_status
    if flags.location_permission_requested or status in _RESOLVED_STATUSES:
        return FlowEntry(
            state=Completed(cookie=CookieChoice.ACCEPTED, location=_recorded_outcome(flags)),
            visible=False,
        )

    if status not in HARD_STOP_STATUSES:
        return FlowEntry(state=LocationStep(), visible=True)

    # consented, never asked, but a hard-stop status is on record
    return FlowEntry(
        state=Completed(cookie=CookieChoice.ACCEPTED, location=_recorded_outcome(flags)),
        visible=False,
    )
