"""
Shared test fixtures for the weather API test suite.

Provides:
- FakeClock for deterministic cache expiry
- FakePointSource, a scripted stand-in for OpenMeteoClient.fetch_point
- async FastAPI test client with every upstream mocked (no network)
- clean rate limit window between tests
"""

import asyncio
import os
from typing import Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure test env vars before any app imports
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("SENTRY_DSN", "")
os.environ.setdefault("OPENWEATHER_API_KEY", "test-key")

from services.weather_api.errors import UpstreamError  # noqa: E402
from services.weather_api.grid import GridFetcher, SpatialCache  # noqa: E402


class FakeClock:
    """Manually advanced seconds source."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePointSource:
    """
    Deterministic fetch_point: temperature = 20 + lat/10, rounded to 2 dp.

    Points listed in `failing` raise UpstreamError; `delay` makes each call
    suspend so concurrency can be observed.
    """

    def __init__(self, failing: set[tuple[float, float]] | None = None, delay: float = 0.0) -> None:
        self.failing = failing or set()
        self.delay = delay
        self.calls: list[tuple[float, float]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.completed = 0
        self.completed_at_start: list[int] = []

    async def fetch_point(self, lat: float, lon: float) -> float:
        self.calls.append((lat, lon))
        self.completed_at_start.append(self.completed)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if (round(lat, 6), round(lon, 6)) in self.failing:
                raise UpstreamError(f"boom at {lat},{lon}", provider="test")
            return round(20 + lat / 10, 2)
        finally:
            self.in_flight -= 1
            self.completed += 1


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def spatial_cache(clock) -> SpatialCache:
    return SpatialCache(ttl_seconds=600, sweep_interval_seconds=300, clock=clock)


@pytest.fixture
def point_source() -> FakePointSource:
    return FakePointSource()


@pytest.fixture
def make_point_source():
    """Factory for custom FakePointSource instances (failing points, delays)."""
    return FakePointSource


# ---------------------------------------------------------------------------
# FastAPI test client (upstream clients mocked)
# ---------------------------------------------------------------------------

def make_current_weather(**overrides: Any) -> dict:
    base = {
        "temperature": 29.4,
        "apparentTemperature": 33.1,
        "humidity": 74,
        "weatherCode": 3,
        "windSpeed": 8.2,
        "windDirection": 120,
        "precipitation": 0.0,
        "time": "2026-10-18T14:00",
        "condition": "Overcast",
        "icon": 1,
    }
    base.update(overrides)
    return base


def make_place(**overrides: Any) -> dict:
    base = {
        "name": "Hanoi, VN",
        "nameVi": "Hanoi",
        "lat": 21.0285,
        "lon": 105.8542,
        "country": "VN",
        "state": "",
        "placeType": "place",
    }
    base.update(overrides)
    return base


@pytest.fixture
def mock_weather_client():
    client = AsyncMock()
    client.get_current_weather = AsyncMock(return_value=make_current_weather())
    client.get_forecast = AsyncMock(return_value=[])
    client.get_hourly_forecast = AsyncMock(return_value=[])
    return client


@pytest.fixture
def mock_geocoding():
    geocoding = AsyncMock()
    geocoding.search = AsyncMock(return_value=[make_place()])
    geocoding.reverse = AsyncMock(return_value=make_place(name="Hoan Kiem, Hanoi", nameVi="Hoan Kiem, Hanoi"))
    return geocoding


@pytest.fixture(autouse=True)
def _reset_rate_limit_window():
    from services.weather_api.main import local_rate_window

    local_rate_window.reset()
    yield
    local_rate_window.reset()


@pytest.fixture
def app(mock_weather_client, mock_geocoding, spatial_cache, point_source):
    """The real FastAPI app with mocked services injected into app.state."""
    from services.weather_api.config import settings
    from services.weather_api.main import app as _app

    _app.state.settings = settings
    _app.state.redis = None
    _app.state.weather_client = mock_weather_client
    _app.state.geocoding = mock_geocoding
    _app.state.grid_cache = spatial_cache
    _app.state.grid_fetcher = GridFetcher(
        client=point_source,
        cache=spatial_cache,
        batch_size=settings.grid_batch_size,
        max_grid_size=settings.grid_max_size,
    )
    return _app


@pytest.fixture
async def client(app):
    """Async HTTP client bound to the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
