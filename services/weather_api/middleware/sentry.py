"""
Sentry error reporting for the weather API.

Only active when SENTRY_DSN is set. Client errors (4xx WeatherAPIError) are
not reported. Auth headers, cookies and the OpenWeatherMap ?appid= key are
scrubbed from requests and httpx breadcrumbs before an event leaves the process.
"""

import re
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from services.weather_api.config import settings
from services.weather_api.errors import WeatherAPIError

FILTERED = "[FILTERED]"
SCRUBBED_HEADERS = frozenset({"authorization", "cookie", "set-cookie", "x-api-key"})

_APPID_PATTERN = re.compile(r"(appid=)[^&\s]+")


def _mask_appid(value: Any) -> Any:
    return _APPID_PATTERN.sub(r"\1" + FILTERED, value) if isinstance(value, str) else value


def _mask_headers(container: Any) -> None:
    headers = container.get("headers") if isinstance(container, dict) else None
    if not isinstance(headers, dict):
        return
    for name in [n for n in headers if n.lower() in SCRUBBED_HEADERS]:
        headers[name] = FILTERED


def _is_client_error(hint: dict[str, Any]) -> bool:
    exc_info = hint.get("exc_info") if hint else None
    if not exc_info:
        return False
    exc = exc_info[1]
    return isinstance(exc, WeatherAPIError) and exc.status_code < 500


def _strip_sensitive_data(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    """before_send hook. Returns None to drop the event."""
    if _is_client_error(hint):
        return None

    for crumb in event.get("breadcrumbs", {}).get("values", []):
        data = crumb.get("data")
        _mask_headers(data)
        if isinstance(data, dict) and "url" in data:
            data["url"] = _mask_appid(data["url"])

    request = event.get("request")
    _mask_headers(request)
    if isinstance(request, dict):
        for field in ("url", "query_string"):
            if field in request:
                request[field] = _mask_appid(request[field])
    return event


def setup_sentry() -> None:
    if not settings.sentry_dsn:
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=f"{settings.app_name}@{settings.app_version}",
        traces_sample_rate=settings.sentry_traces_sample_rate,
        before_send=_strip_sensitive_data,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        send_default_pii=False,
    )
