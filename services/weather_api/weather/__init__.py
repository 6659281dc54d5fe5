"""
Weather package.

Open-Meteo client: single-point temperatures for the grid, plus current,
daily and hourly forecasts translated into the client's field names.
"""

from services.weather_api.weather.openmeteo import OpenMeteoClient, weather_condition, weather_icon

__all__ = ["OpenMeteoClient", "weather_condition", "weather_icon"]
