# geocoding.py — Reverse geocoding for display addresses
# Best-effort: any failure or timeout yields UNKNOWN_LOCATION.

import logging
from typing import Any, Optional, Protocol

import httpx

import config
from domain import Location
from errors import UpstreamError

logger = logging.getLogger("residency-desk.geocoding")

UNKNOWN_LOCATION = "Unknown Location"


class GeocodingResolver(Protocol):
    async def reverse_geocode(self, lat: Optional[float], lng: Optional[float]) -> str: ...

    async def readable_address(self, location: Optional[Location]) -> str: ...


def compose_address(location: Location) -> str:
    """Address like 'Block A1, Green Park' from the structured fields."""
    parts = []
    if location.block_number:
        parts.append(f"Block {location.block_number}")
    if location.area:
        parts.append(location.area)
    return ", ".join(parts) or UNKNOWN_LOCATION


class NominatimGeocoder:
    def __init__(
        self,
        url: str = config.GEOCODING_URL,
        timeout: float = config.GEOCODING_TIMEOUT_SECONDS,
        user_agent: str = config.GEOCODING_USER_AGENT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.user_agent = user_agent
        self.transport = transport

    async def reverse_geocode(self, lat: Optional[float], lng: Optional[float]) -> str:
        if lat is None or lng is None:
            return UNKNOWN_LOCATION
        try:
            data = await self.lookup(lat, lng)
        except UpstreamError as e:
            logger.warning(f"Reverse geocoding failed for ({lat}, {lng}): {e}")
            return UNKNOWN_LOCATION
        if isinstance(data, dict) and data.get("display_name"):
            return data["display_name"]
        return UNKNOWN_LOCATION

    async def lookup(self, lat: float, lng: float) -> Any:
        """Raw reverse-geocoding response. Raises UpstreamError on any failure."""
        params = {
            "lat": lat,
            "lon": lng,
            "format": "json",
            "addressdetails": 1,
            "accept-language": "en",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get(self.url, params=params, headers={"User-Agent": self.user_agent})
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamError(f"Geocoding service error: {e}", service="geocoding") from e

    async def readable_address(self, location: Optional[Location]) -> str:
        if location is None:
            return UNKNOWN_LOCATION
        if location.has_coordinates:
            return await self.reverse_geocode(location.latitude, location.longitude)
        return compose_address(location)
