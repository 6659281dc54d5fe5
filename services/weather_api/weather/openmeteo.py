"""
OpenMeteoClient — Open-Meteo forecast API client.

Free, keyless, but rate limited per IP. All calls go to a single endpoint:

  GET {base}/forecast?latitude=..&longitude=..&current=..|daily=..|hourly=..

and the response carries the requested block:

  {
    "current": {"time": "2026-10-18T14:00", "temperature_2m": 29.4, ...},
    "daily":   {"time": [...], "temperature_2m_max": [...], ...},
    "hourly":  {"time": [...], "temperature_2m": [...], ...},
  }

fetch_point() is the leaf data source of the temperature grid: one coordinate
in, one float out, or a typed UpstreamError. The client never retries; the
grid fetcher treats any failure as "point unavailable".

Normalization policy (same for current, daily and hourly):
  humidity       rounded int clamped to [0, 100]; missing/NaN -> None
  temperature    °C as reported
  wind           km/h as reported
  precipitation  mm as reported
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

import httpx

from services.weather_api.errors import (
    InvalidCoordinatesError,
    MissingReadingError,
    RateLimitedError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

_PROVIDER = "open-meteo"

_CURRENT_FIELDS = (
    "temperature_2m",
    "relative_humidity_2m",
    "apparent_temperature",
    "weather_code",
    "wind_speed_10m",
    "wind_direction_10m",
    "precipitation",
)

_DAILY_FIELDS = (
    "weather_code",
    "temperature_2m_max",
    "temperature_2m_min",
    "precipitation_sum",
    "precipitation_probability_max",
    "wind_speed_10m_max",
    "relative_humidity_2m_max",
    "sunrise",
    "sunset",
)

_HOURLY_FIELDS = (
    "temperature_2m",
    "weather_code",
    "precipitation_probability",
    "wind_speed_10m",
    "relative_humidity_2m",
)

MAX_FORECAST_DAYS = 16
MAX_FORECAST_HOURS = 168

# WMO weather interpretation codes
_WMO_CONDITIONS = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Foggy",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Moderate drizzle",
    55: "Dense drizzle",
    61: "Slight rain",
    63: "Moderate rain",
    65: "Heavy rain",
    71: "Slight snow",
    73: "Moderate snow",
    75: "Heavy snow",
    77: "Snow grains",
    80: "Slight rain showers",
    81: "Moderate rain showers",
    82: "Violent rain showers",
    85: "Slight snow showers",
    86: "Heavy snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with slight hail",
    99: "Thunderstorm with heavy hail",
}

# Client icon groups: 0 clear, 1 cloudy/fog, 3 rain, 4 storm, 5 snow
_ICON_RAIN = {51, 53, 55, 61, 63, 65, 80, 81, 82}
_ICON_SNOW = {71, 73, 75, 77, 85, 86}
_ICON_STORM = {95, 96, 99}


def weather_condition(code: int | None) -> str:
    return _WMO_CONDITIONS.get(code, "Unknown")


def weather_icon(code: int | None) -> int:
    """Map a WMO code to the client's icon group (cloudy when unknown)."""
    if code == 0:
        return 0
    if code in _ICON_RAIN:
        return 3
    if code in _ICON_SNOW:
        return 5
    if code in _ICON_STORM:
        return 4
    return 1


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)


def _normalize_humidity(value: Any) -> int | None:
    if not _is_number(value):
        return None
    return max(0, min(100, int(round(value))))


def _at(series: list | None, index: int) -> Any:
    """Index into an Open-Meteo column, tolerating missing or short columns."""
    if not series or index >= len(series):
        return None
    return series[index]


def _validate_coordinates(lat: float, lon: float) -> None:
    if not (_is_number(lat) and _is_number(lon)):
        raise InvalidCoordinatesError(f"Invalid coordinates: lat={lat}, lon={lon}", provider=_PROVIDER)
    if not -90 <= lat <= 90:
        raise InvalidCoordinatesError(f"Latitude out of range: {lat}", provider=_PROVIDER)
    if not -180 <= lon <= 180:
        raise InvalidCoordinatesError(f"Longitude out of range: {lon}", provider=_PROVIDER)


def _parse_current(current: dict[str, Any]) -> dict[str, Any]:
    code = current.get("weather_code")
    return {
        "temperature": current.get("temperature_2m"),
        "apparentTemperature": current.get("apparent_temperature"),
        "humidity": _normalize_humidity(current.get("relative_humidity_2m")),
        "weatherCode": code,
        "windSpeed": current.get("wind_speed_10m"),
        "windDirection": current.get("wind_direction_10m"),
        "precipitation": current.get("precipitation"),
        "time": current.get("time"),
        "condition": weather_condition(code),
        "icon": weather_icon(code),
    }


def _parse_daily(daily: dict[str, Any]) -> list[dict[str, Any]]:
    forecast = []
    for i, date in enumerate(daily["time"]):
        code = _at(daily.get("weather_code"), i)
        forecast.append({
            "date": date,
            "weatherCode": code,
            "tempMax": _at(daily.get("temperature_2m_max"), i),
            "tempMin": _at(daily.get("temperature_2m_min"), i),
            "precipitation": _at(daily.get("precipitation_sum"), i),
            "precipitationProbability": _at(daily.get("precipitation_probability_max"), i),
            "windSpeed": _at(daily.get("wind_speed_10m_max"), i),
            "humidity": _normalize_humidity(_at(daily.get("relative_humidity_2m_max"), i)),
            "sunrise": _at(daily.get("sunrise"), i),
            "sunset": _at(daily.get("sunset"), i),
            "condition": weather_condition(code),
            "icon": weather_icon(code),
        })
    return forecast


def _parse_hourly(hourly: dict[str, Any], start: int, hours: int) -> list[dict[str, Any]]:
    times = hourly["time"]
    end = min(start + hours, len(times))
    forecast = []
    for i in range(start, end):
        code = _at(hourly.get("weather_code"), i)
        forecast.append({
            "time": times[i],
            "temperature": _at(hourly.get("temperature_2m"), i),
            "weatherCode": code,
            "precipitationProbability": _at(hourly.get("precipitation_probability"), i),
            "windSpeed": _at(hourly.get("wind_speed_10m"), i),
            "humidity": _normalize_humidity(_at(hourly.get("relative_humidity_2m"), i)),
            "condition": weather_condition(code),
            "icon": weather_icon(code),
        })
    return forecast


def _current_hour_index(times: list[str], now: datetime) -> int:
    """First index whose local ISO hour is >= now's hour (0 if none).

    Open-Meteo returns local times as 'YYYY-MM-DDTHH:00' in the requested
    timezone, so plain string comparison orders them correctly.
    """
    current_hour = now.strftime("%Y-%m-%dT%H:00")
    for i, t in enumerate(times):
        if t >= current_hour:
            return i
    return 0


class OpenMeteoClient:
    """
    Open-Meteo forecast client over a shared httpx.AsyncClient.

    Usage:
        async with httpx.AsyncClient(timeout=10.0) as http:
            client = OpenMeteoClient(http)
            temp_c = await client.fetch_point(21.03, 105.85)
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str = "https://api.open-meteo.com/v1",
        timezone: str = "Asia/Bangkok",
    ) -> None:
        self._http = http
        self._forecast_url = f"{base_url.rstrip('/')}/forecast"
        self.timezone = timezone

    async def _get_forecast(self, params: dict[str, Any]) -> dict[str, Any]:
        """GET /forecast and decode JSON, mapping every failure to UpstreamError."""
        logger.debug("Open-Meteo request: %s params=%s", self._forecast_url, params)
        try:
            resp = await self._http.get(self._forecast_url, params=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 429:
                logger.warning(
                    "Open-Meteo rate limited lat=%s lon=%s",
                    params.get("latitude"),
                    params.get("longitude"),
                )
                raise RateLimitedError("Open-Meteo rate limit exceeded", provider=_PROVIDER) from exc
            logger.warning(
                "Open-Meteo returned %d for lat=%s lon=%s: %s",
                status,
                params.get("latitude"),
                params.get("longitude"),
                exc.response.text[:200],
            )
            raise UpstreamError(f"Open-Meteo returned HTTP {status}", provider=_PROVIDER) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Open-Meteo request failed for lat=%s lon=%s: %s",
                params.get("latitude"),
                params.get("longitude"),
                exc,
            )
            raise UpstreamError(f"Open-Meteo request failed: {exc.__class__.__name__}", provider=_PROVIDER) from exc
        except ValueError as exc:
            raise MissingReadingError("Open-Meteo returned a non-JSON body", provider=_PROVIDER) from exc

    async def fetch_point(self, lat: float, lon: float) -> float:
        """Current 2 m temperature (°C) at a single coordinate."""
        _validate_coordinates(lat, lon)
        payload = await self._get_forecast({
            "latitude": lat,
            "longitude": lon,
            "current": "temperature_2m",
        })
        temperature = (payload.get("current") or {}).get("temperature_2m")
        if not _is_number(temperature):
            raise MissingReadingError(
                f"No temperature reading for lat={lat}, lon={lon}", provider=_PROVIDER
            )
        return float(temperature)

    async def get_current_weather(self, lat: float, lon: float) -> dict[str, Any]:
        _validate_coordinates(lat, lon)
        payload = await self._get_forecast({
            "latitude": lat,
            "longitude": lon,
            "current": ",".join(_CURRENT_FIELDS),
            "timezone": self.timezone,
        })
        current = payload.get("current")
        if not current:
            raise MissingReadingError("No current weather block in response", provider=_PROVIDER)

        weather = _parse_current(current)
        logger.debug(
            "Open-Meteo current lat=%s lon=%s temp=%s code=%s condition=%s",
            lat, lon, weather["temperature"], weather["weatherCode"], weather["condition"],
        )
        return weather

    async def get_forecast(self, lat: float, lon: float, days: int = 7) -> list[dict[str, Any]]:
        """Daily forecast for 1..16 days."""
        _validate_coordinates(lat, lon)
        days = max(1, min(MAX_FORECAST_DAYS, days))
        payload = await self._get_forecast({
            "latitude": lat,
            "longitude": lon,
            "daily": ",".join(_DAILY_FIELDS),
            "forecast_days": days,
            "timezone": self.timezone,
        })
        daily = payload.get("daily")
        if not daily or not daily.get("time"):
            raise MissingReadingError("No daily forecast block in response", provider=_PROVIDER)
        return _parse_daily(daily)

    async def get_hourly_forecast(
        self,
        lat: float,
        lon: float,
        hours: int = 24,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """
        Hourly forecast for the next `hours` hours, starting at the current
        local hour in the configured timezone.

        One extra day is requested so a late-evening call still has `hours`
        entries left after skipping the hours already past today.
        """
        _validate_coordinates(lat, lon)
        hours = max(1, min(MAX_FORECAST_HOURS, hours))
        forecast_days = min(MAX_FORECAST_DAYS, math.ceil(hours / 24) + 1)
        payload = await self._get_forecast({
            "latitude": lat,
            "longitude": lon,
            "hourly": ",".join(_HOURLY_FIELDS),
            "forecast_days": forecast_days,
            "timezone": self.timezone,
        })
        hourly = payload.get("hourly")
        if not hourly or not hourly.get("time"):
            raise MissingReadingError("No hourly forecast block in response", provider=_PROVIDER)

        local_now = now or datetime.now(ZoneInfo(self.timezone))
        start = _current_hour_index(hourly["time"], local_now)
        forecast = _parse_hourly(hourly, start, hours)
        logger.debug(
            "Open-Meteo hourly lat=%s lon=%s start=%s returned=%d of %d",
            lat, lon, hourly["time"][start], len(forecast), len(hourly["time"]),
        )
        return forecast
