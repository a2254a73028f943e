"""Google Maps reverse geocoding and nearby-place lookup.

Both calls are best-effort. Reverse geocoding always yields a string (the
compacted address, or "lat, lng" when the lookup fails); the places
lookup yields an empty list on failure.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.admin.events import emit
from src.config import settings
from src.enrichment.schemas import NearbyPlace
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

_STATUS_OK = "OK"
_STATUS_ZERO_RESULTS = "ZERO_RESULTS"


def format_coordinates(lat: float, lng: float) -> str:
    """Fallback location label: six decimals, comma separated."""
    return f"{lat:.6f}, {lng:.6f}"


def _component(components: list[dict[str, Any]], kind: str) -> str | None:
    for component in components:
        if kind in component.get("types", []):
            return component.get("long_name")
    return None


def compact_address(formatted: str, components: list[dict[str, Any]]) -> str:
    """Drop the trailing country name and any postal-code tokens from an address.

    >>> compact_address("1 Main St, Springfield, IL 62701, USA",
    ...     [{"long_name": "United States", "short_name": "US", "types": ["country"]},
    ...      {"long_name": "62701", "types": ["postal_code"]}])
    '1 Main St, Springfield, IL'
    """
    country_names = {
        name
        for component in components
        if "country" in component.get("types", [])
        for name in (component.get("long_name"), component.get("short_name"))
        if name
    }
    # Google abbreviates some countries in formatted_address
    if "United States" in country_names:
        country_names.add("USA")
    postal_code = _component(components, "postal_code")

    parts = [part.strip() for part in formatted.split(",")]
    if parts and parts[-1] in country_names:
        parts.pop()
    # Some locales put the country first (e.g. "South Korea Seoul ...")
    for name in country_names:
        if parts and parts[0].startswith(name + " "):
            parts[0] = parts[0][len(name) + 1:]

    cleaned: list[str] = []
    for part in parts:
        tokens = [t for t in part.split() if t != postal_code]
        if tokens:
            cleaned.append(" ".join(tokens))
    return ", ".join(cleaned)


class GeocodingClient:
    """Thin async wrapper around the Google Geocoding and Places endpoints.

    Without an API key every call short-circuits to its fallback value.
    """

    def __init__(self) -> None:
        self._api_key = settings.enrichment.google_maps_api_key
        self._geocode_url = settings.enrichment.geocode_url
        self._places_url = settings.enrichment.places_url
        self._radius = settings.enrichment.places_radius_meters
        self._timeout = httpx.Timeout(10.0, connect=5.0)

    @property
    def _bypass_mode(self) -> bool:
        return not self._api_key

    async def reverse_geocode(self, lat: float, lng: float) -> str:
        """Resolve coordinates to a compact human-readable address."""
        fallback = format_coordinates(lat, lng)
        if self._bypass_mode:
            logger.debug("Reverse geocoding bypassed (no API key configured)")
            return fallback

        try:
            payload = await self._get(self._geocode_url, {"latlng": f"{lat},{lng}"})
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Reverse geocoding failed: %s", type(exc).__name__)
            await self._degraded("reverse_geocode", type(exc).__name__)
            return fallback

        results = payload.get("results") or []
        if payload.get("status") != _STATUS_OK or not results:
            logger.warning("Reverse geocoding returned status %s", payload.get("status"))
            await self._degraded("reverse_geocode", str(payload.get("status")))
            return fallback

        first = results[0]
        formatted = first.get("formatted_address")
        if not formatted:
            return fallback
        return compact_address(formatted, first.get("address_components") or []) or fallback

    async def nearby_places(self, lat: float, lng: float, keyword: str = "shelter") -> list[NearbyPlace]:
        """Places of the given kind around a point, nearest-ranked by the provider."""
        if self._bypass_mode:
            return []

        try:
            payload = await self._get(self._places_url, {
                "location": f"{lat},{lng}",
                "radius": str(self._radius),
                "keyword": keyword,
            })
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Nearby places lookup failed: %s", type(exc).__name__)
            await self._degraded("nearby_places", type(exc).__name__)
            return []

        status = payload.get("status")
        if status not in {_STATUS_OK, _STATUS_ZERO_RESULTS}:
            logger.warning("Nearby places returned status %s", status)
            await self._degraded("nearby_places", str(status))
            return []

        places: list[NearbyPlace] = []
        for result in payload.get("results") or []:
            location = (result.get("geometry") or {}).get("location") or {}
            if "lat" not in location or "lng" not in location or not result.get("name"):
                continue
            places.append(NearbyPlace(
                name=result["name"],
                address=result.get("vicinity"),
                latitude=location["lat"],
                longitude=location["lng"],
                place_id=result.get("place_id"),
            ))
        return places

    async def _get(self, url: str, params: dict[str, str]) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(url, params={**params, "key": self._api_key})
            response.raise_for_status()
            return response.json()

    @staticmethod
    async def _degraded(operation: str, reason: str) -> None:
        await emit(SystemEvent(
            event_type=EventType.ENRICHMENT_DEGRADED,
            data={"enricher": operation, "reason": reason},
            source_module="enrichment.geocoding",
        ))


# Module-level singleton
geocoding_client = GeocodingClient()
