"""
Error taxonomy shared by services and routers.

Each error carries the HTTP status and envelope code the exception handlers
in main.py render. Services raise these; routers let them propagate.

  ValidationError          400  malformed or semantically invalid input
  NotFoundError            404  geocoding returned nothing
  UpstreamError            502  a provider call failed
    RateLimitedError       503  provider answered 429
    InvalidCoordinatesError 400 lat/lon outside the valid range
    MissingReadingError    502  provider response lacks the expected field
  GridTimeoutError         504  grid fetch exceeded the request deadline
  FatalError               500  unexpected internal failure
"""

from __future__ import annotations


class WeatherAPIError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(WeatherAPIError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(WeatherAPIError):
    status_code = 404
    code = "NOT_FOUND"


class UpstreamError(WeatherAPIError):
    status_code = 502
    code = "UPSTREAM_ERROR"

    def __init__(self, message: str, provider: str = "unknown") -> None:
        super().__init__(message)
        self.provider = provider


class RateLimitedError(UpstreamError):
    status_code = 503
    code = "UPSTREAM_RATE_LIMITED"


class InvalidCoordinatesError(UpstreamError):
    status_code = 400
    code = "INVALID_COORDINATES"


class MissingReadingError(UpstreamError):
    code = "UPSTREAM_DATA_ERROR"


class GridTimeoutError(WeatherAPIError):
    status_code = 504
    code = "GRID_TIMEOUT"


class FatalError(WeatherAPIError):
    pass
