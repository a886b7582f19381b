"""Visitor REST API client with typed errors."""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError

from visitrack.models import ContactData, LocationData, TrackResponse, VisitorSession

__all__ = ["BackendError", "VisitorApiClient"]


class BackendError(Exception):
    """Raised when the backend is unreachable or returns an unexpected response."""


class VisitorApiClient:
    """HTTP client for the ``/visitor/*`` endpoints."""

    def __init__(
        self,
        base_url: str = "http://localhost:5000/api",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def _request(self, method: str, path: str, json: Any = None) -> dict[str, Any]:
        try:
            resp = await self._client.request(method, path, json=json)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as e:
            raise BackendError(f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise BackendError(f"{method} {path} returned malformed JSON") from e
        if not isinstance(body, dict):
            raise BackendError(f"{method} {path} returned a non-object body")
        return body

    async def get_session(self) -> VisitorSession:
        body = await self._request("GET", "/visitor/session")
        try:
            return VisitorSession.model_validate(body)
        except ValidationError as e:
            raise BackendError(f"Malformed visitor session: {e}") from e

    async def track(self, payload: dict[str, Any]) -> TrackResponse:
        """Record a consent decision; the backend may answer with a visit id."""
        body = await self._request("POST", "/visitor/track", json=payload)
        try:
            return TrackResponse.model_validate(body)
        except ValidationError as e:
            raise BackendError(f"Malformed track response: {e}") from e

    async def update_location(self, location: LocationData) -> bool:
        body = await self._request("POST", "/visitor/location", json=location.to_payload())
        return bool(body.get("success", False))

    async def update_contact(self, contact: ContactData) -> bool:
        body = await self._request("POST", "/visitor/contact", json=contact.to_payload())
        return bool(body.get("success", False))

    def set_cookie(self, name: str, value: str) -> None:
        """Mirror a cookie into the client jar so later calls carry it."""
        self._client.cookies.set(name, value)

    async def close(self) -> None:
        await self._client.aclose()
