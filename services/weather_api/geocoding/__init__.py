"""
Geocoding package.

Forward search via OpenWeatherMap; reverse lookup via Nominatim with an
OpenWeatherMap fallback.
"""

from services.weather_api.geocoding.service import GeocodingService

__all__ = ["GeocodingService"]
