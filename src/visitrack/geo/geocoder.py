"""Best-effort reverse geocoding of coordinates into place names."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from visitrack.models import LocationData

__all__ = ["GeocodeError", "ReverseGeocoder"]

logger = logging.getLogger(__name__)

DEFAULT_GEOCODE_URL = "https://api.bigdatacloud.net/data/reverse-geocode-client"


class GeocodeError(Exception):
    """Lookup failed or returned something unusable. Never leaves enrich()."""


class ReverseGeocoder:
    """HTTP client for a keyless reverse-geocoding lookup."""

    def __init__(
        self,
        url: str = DEFAULT_GEOCODE_URL,
        language: str = "en",
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._language = language
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _lookup(self, latitude: float, longitude: float) -> dict[str, Any]:
        try:
            resp = await self._client.get(
                self._url,
                params={
                    "latitude": latitude,
                    "longitude": longitude,
                    "localityLanguage": self._language,
                },
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise GeocodeError(f"reverse geocode failed: {e}") from e
        if not isinstance(data, dict):
            raise GeocodeError("reverse geocode returned a non-object body")
        return data

    async def enrich(self, location: LocationData) -> None:
        """Fill address/city/state/country on ``location`` in place.

        Missing or zero coordinates skip the lookup. Failures are logged and
        leave the fields unset.
        """
        if not location.latitude or not location.longitude:
            return
        try:
            data = await self._lookup(location.latitude, location.longitude)
        except GeocodeError as exc:
            logger.warning("Could not reverse geocode location: %s", exc)
            return

        location.address = data.get("locality") or data.get("city") or ""
        location.city = data.get("city") or data.get("locality") or ""
        location.state = data.get("principalSubdivision") or ""
        location.country = data.get("countryName") or ""

    async def close(self) -> None:
        await self._client.aclose()
