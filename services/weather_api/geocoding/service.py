"""
GeocodingService — place search and reverse lookup.

Providers:
  search   OpenWeatherMap /geo/1.0/direct   (API key, up to 5 matches)
  reverse  Nominatim /reverse               (street-level address, preferred)
           OpenWeatherMap /geo/1.0/reverse  (fallback, city-level)

Nominatim requires a descriptive User-Agent and allows ~1 req/s, so it is only
used for single reverse lookups, never for batch work.

Returned places use the client's field names:
  {"name": "Hanoi, VN", "nameVi": "Hanoi", "lat": 21.03, "lon": 105.85,
   "country": "VN", "state": "", "placeType": "place"}
Nominatim results add city / district / street / houseNumber / displayName.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from services.weather_api.errors import NotFoundError, RateLimitedError, UpstreamError

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 5


def _first(addr: dict[str, Any], *keys: str) -> str:
    for key in keys:
        if addr.get(key):
            return addr[key]
    return ""


def _parse_owm_place(location: dict[str, Any], lat: float | None = None, lon: float | None = None) -> dict[str, Any]:
    """Shape an OpenWeatherMap geocoding entry. Reverse lookups echo the query coords."""
    return {
        "name": f"{location.get('name', '')}, {location.get('country', '')}",
        "nameVi": location.get("name", ""),
        "lat": location.get("lat") if lat is None else lat,
        "lon": location.get("lon") if lon is None else lon,
        "country": location.get("country", ""),
        "state": location.get("state") or "",
        "placeType": "place",
    }


def _parse_nominatim(payload: dict[str, Any], lat: float, lon: float) -> dict[str, Any] | None:
    """
    Build a detailed address from a Nominatim /reverse response.

    Returns None when the response has no address block, so the caller
    falls through to the next provider.
    """
    addr = payload.get("address")
    if not addr:
        return None

    parts = [
        _first(addr, "house_number"),
        _first(addr, "road", "street", "pedestrian"),
        _first(addr, "suburb", "neighbourhood"),
        _first(addr, "quarter", "city_district"),
        _first(addr, "city", "town", "village"),
        _first(addr, "state", "region"),
    ]
    detailed = ", ".join(p for p in parts if p) or payload.get("display_name", "")

    return {
        "name": detailed,
        "nameVi": detailed,
        "lat": lat,
        "lon": lon,
        "country": addr.get("country") or "Vietnam",
        "state": _first(addr, "state", "region"),
        "city": _first(addr, "city", "town", "village"),
        "district": _first(addr, "quarter", "city_district", "suburb"),
        "street": _first(addr, "road", "street", "pedestrian"),
        "houseNumber": addr.get("house_number") or "",
        "placeType": "place",
        "displayName": payload.get("display_name", ""),
    }


class GeocodingService:
    """
    Forward and reverse geocoding with a provider fallback chain.

    Usage:
        service = GeocodingService(http, api_key="...")
        places = await service.search("Hanoi")
        place = await service.reverse(21.0285, 105.8542)
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str,
        openweather_base_url: str = "https://api.openweathermap.org",
        nominatim_base_url: str = "https://nominatim.openstreetmap.org",
        user_agent: str = "PleasantWeatherApp/1.0",
        language: str = "vi",
    ) -> None:
        self._http = http
        self._api_key = api_key
        self._owm_base = openweather_base_url.rstrip("/")
        self._nominatim_base = nominatim_base_url.rstrip("/")
        self._user_agent = user_agent
        self._language = language

    async def _owm_get(self, path: str, params: dict[str, Any]) -> Any:
        if not self._api_key:
            logger.warning("OPENWEATHER_API_KEY not set; skipping OpenWeatherMap %s", path)
            raise UpstreamError("OpenWeatherMap geocoding is not configured", provider="openweathermap")

        try:
            resp = await self._http.get(
                f"{self._owm_base}{path}",
                params={**params, "appid": self._api_key},
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("OpenWeatherMap %s returned %d: %s", path, status, exc.response.text[:200])
            if status == 429:
                raise RateLimitedError("OpenWeatherMap rate limit exceeded", provider="openweathermap") from exc
            raise UpstreamError(f"OpenWeatherMap returned HTTP {status}", provider="openweathermap") from exc
        except httpx.HTTPError as exc:
            logger.warning("OpenWeatherMap %s failed: %s", path, exc)
            raise UpstreamError("OpenWeatherMap request failed", provider="openweathermap") from exc
        except ValueError as exc:
            raise UpstreamError("OpenWeatherMap returned a non-JSON body", provider="openweathermap") from exc

    async def search(self, query: str, limit: int = SEARCH_LIMIT) -> list[dict[str, Any]]:
        """Resolve a place name to up to `limit` candidate places."""
        data = await self._owm_get("/geo/1.0/direct", {"q": query, "limit": limit})
        if not data:
            raise NotFoundError(f"No location found for {query!r}")
        return [_parse_owm_place(location) for location in data]

    async def _reverse_nominatim(self, lat: float, lon: float) -> dict[str, Any] | None:
        """Nominatim leg of reverse(); any failure returns None."""
        try:
            resp = await self._http.get(
                f"{self._nominatim_base}/reverse",
                params={
                    "lat": lat,
                    "lon": lon,
                    "format": "json",
                    "addressdetails": 1,
                    "accept-language": self._language,
                },
                headers={"User-Agent": self._user_agent},
            )
            resp.raise_for_status()
            return _parse_nominatim(resp.json(), lat, lon)
        except (httpx.HTTPError, ValueError) as exc:
            logger.info("Nominatim reverse failed for lat=%s lon=%s, falling back: %s", lat, lon, exc)
            return None

    async def reverse(self, lat: float, lon: float) -> dict[str, Any]:
        """Resolve coordinates to a place: Nominatim first, OpenWeatherMap second."""
        place = await self._reverse_nominatim(lat, lon)
        if place is not None:
            return place

        data = await self._owm_get("/geo/1.0/reverse", {"lat": lat, "lon": lon, "limit": 1})
        if not data:
            raise NotFoundError(f"No location found at lat={lat}, lon={lon}")
        return _parse_owm_place(data[0], lat=lat, lon=lon)
