# config/api_config.py
"""Process configuration: endpoints, credentials and pipeline defaults."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional

from dotenv import load_dotenv

from pollenwatch.lib.errors import ConfigurationError

load_dotenv()

POLLEN_ENDPOINT = "https://pollen.googleapis.com/v1/forecast:lookup"
NOMINATIM_USER_AGENT = "pollenwatch"

DEFAULT_FORECAST_DAYS = 1
MAX_FORECAST_DAYS = 5
DEFAULT_HTTP_TIMEOUT = 15.0
DEFAULT_LOCATION_TIMEOUT_MS = 10_000
DEFAULT_LOCATION_MAX_AGE_MS = 60_000

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Google takes the API key as a query parameter, so request URLs carry it.
KEY_PARAM = re.compile(r"(key=)[^&\s'\"]+")

_TRUE = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    # Credentials stay out of repr so a logged Settings never leaks them.
    pollen_api_key: Optional[str] = field(default=None, repr=False)
    reverse_geocode_api_key: Optional[str] = field(default=None, repr=False)
    forecast_days: int = DEFAULT_FORECAST_DAYS
    language_code: str = "en"
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    location_timeout_ms: int = DEFAULT_LOCATION_TIMEOUT_MS
    location_max_age_ms: int = DEFAULT_LOCATION_MAX_AGE_MS
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    city: Optional[str] = None
    demo_mode: bool = False
    log_level: str = "INFO"


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _number(env: Mapping[str, str], name: str, default, cast):
    raw = _clean(env.get(name))
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Read settings from the environment (``.env`` already loaded)."""

    env = os.environ if env is None else env

    days = _number(env, "POLLEN_FORECAST_DAYS", DEFAULT_FORECAST_DAYS, int)
    if days < 1:
        raise ConfigurationError(f"POLLEN_FORECAST_DAYS must be >= 1, got {days}")

    latitude = _number(env, "POLLEN_LATITUDE", None, float)
    longitude = _number(env, "POLLEN_LONGITUDE", None, float)
    if (latitude is None) != (longitude is None):
        raise ConfigurationError("POLLEN_LATITUDE and POLLEN_LONGITUDE must be set together")

    return Settings(
        # Prefer explicit pollen key but fall back to GOOGLE_API_KEY
        pollen_api_key=_clean(env.get("GOOGLE_POLLEN_API_KEY")) or _clean(env.get("GOOGLE_API_KEY")),
        reverse_geocode_api_key=_clean(env.get("GOOGLE_REVERSE_GEOCODE_API_KEY")),
        forecast_days=min(days, MAX_FORECAST_DAYS),
        language_code=_clean(env.get("POLLEN_LANGUAGE")) or "en",
        http_timeout=_number(env, "POLLEN_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT, float),
        location_timeout_ms=_number(env, "LOCATION_TIMEOUT_MS", DEFAULT_LOCATION_TIMEOUT_MS, int),
        location_max_age_ms=_number(env, "LOCATION_MAX_AGE_MS", DEFAULT_LOCATION_MAX_AGE_MS, int),
        latitude=latitude,
        longitude=longitude,
        city=_clean(env.get("POLLEN_CITY")),
        demo_mode=(_clean(env.get("POLLEN_DEMO_MODE")) or "").lower() in _TRUE,
        log_level=(_clean(env.get("LOG_LEVEL")) or "INFO").upper(),
    )


class RedactKeyFilter(logging.Filter):
    """Rewrite ``key=...`` query parameters in a record before it is emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = KEY_PARAM.sub(r"\1***", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(level: str = "INFO") -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    logging.getLogger().setLevel(numeric)

    # urllib3 logs every request line at DEBUG, query string included.
    urllib3_logger = logging.getLogger("urllib3")
    urllib3_logger.setLevel(max(numeric, logging.INFO))
    redact = RedactKeyFilter()
    for name in ("urllib3.connectionpool", "urllib3.connection", "urllib3.util.retry"):
        named = logging.getLogger(name)
        if not any(isinstance(f, RedactKeyFilter) for f in named.filters):
            named.addFilter(redact)
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RedactKeyFilter) for f in handler.filters):
            handler.addFilter(redact)
