"""Geolocation platform contracts (navigator.geolocation / permissions)."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

__all__ = [
    "GeolocationProvider",
    "PermissionsProvider",
    "Position",
    "PositionError",
    "PositionOptions",
]


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float
    accuracy: float


@dataclass(frozen=True)
class PositionOptions:
    enable_high_accuracy: bool = True
    timeout_ms: int = 12_000
    maximum_age_ms: int = 300_000


class PositionError(Exception):
    """Error reported through the platform error callback."""

    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3

    def __init__(self, code: int, message: str = "") -> None:
        super().__init__(message or f"geolocation error {code}")
        self.code = code
        self.message = message


class GeolocationProvider(Protocol):
    """Callback-style position source."""

    def get_current_position(
        self,
        on_success: Callable[[Position], None],
        on_error: Callable[[PositionError], None],
        options: PositionOptions,
    ) -> None:
        """Start a request; exactly one callback should fire, eventually."""
        ...


class PermissionsProvider(Protocol):
    """Permission state lookup without prompting."""

    def query(self, name: str) -> Awaitable[str]:
        """Return "granted", "denied" or "prompt"."""
        ...
