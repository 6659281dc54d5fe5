"""
Application configuration via pydantic-settings.
All config read from environment variables with sensible defaults for local dev.
"""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    # App
    app_name: str = "pleasant-weather-api"
    app_version: str = "0.1.0"
    environment: str = Field(default="development", pattern=r"^(development|staging|production)$")
    # Traceback pages for unhandled errors and DEBUG logging; development only
    debug: bool = False
    log_level: str = "INFO"

    # Redis (optional, rate limiter only; in-process window when unset/unreachable)
    redis_url: str = ""

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173", "https://localhost"]
    )
    frontend_url: str = ""

    # Sentry
    sentry_dsn: str = ""
    sentry_traces_sample_rate: float = Field(default=0.1, ge=0.0, le=1.0)

    # Rate Limiting: sliding window over /api/ paths, per client IP
    rate_limit_max_requests: int = 300
    rate_limit_window_s: int = 900  # 15 minutes

    # Open-Meteo (free, no key)
    open_meteo_base_url: str = "https://api.open-meteo.com/v1"
    open_meteo_timezone: str = "Asia/Bangkok"

    # OpenWeatherMap geocoding
    openweather_api_key: str = ""
    openweather_base_url: str = "https://api.openweathermap.org"

    # Nominatim reverse geocoding (primary provider for reverse lookups)
    nominatim_base_url: str = "https://nominatim.openstreetmap.org"
    nominatim_user_agent: str = "PleasantWeatherApp/1.0"
    nominatim_language: str = "vi"

    upstream_timeout_s: float = 10.0

    # Temperature grid
    grid_cache_ttl_s: float = 600.0
    grid_cache_sweep_interval_s: float = 300.0
    grid_batch_size: int = Field(default=30, ge=1)
    grid_default_size: int = Field(default=10, ge=1)
    grid_max_size: int = Field(default=12, ge=1)
    grid_request_timeout_s: float = 25.0
    grid_stop_on_rate_limit: bool = True

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}


settings = Settings()
