"""Client for the Google Pollen forecast:lookup endpoint."""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import requests

from pollenwatch.config.api_config import (
    DEFAULT_FORECAST_DAYS,
    DEFAULT_HTTP_TIMEOUT,
    KEY_PARAM,
    MAX_FORECAST_DAYS,
    POLLEN_ENDPOINT,
    Settings,
)
from pollenwatch.lib.errors import ConfigurationError, FetchError, MalformedResponse
from pollenwatch.lib.models import KEY_PRECISION, Coordinate, ForecastRequestKey

logger = logging.getLogger(__name__)


class ForecastClient:
    """Fetch raw pollen forecasts, sharing one request per key while it is in flight.

    One client may serve several event loops at once (each Streamlit session
    runs its own). Requests therefore run on the client's thread pool and the
    in-flight table holds ``concurrent.futures.Future`` objects, which any loop
    can await through ``asyncio.wrap_future``.

    Successful responses are not cached: once a request settles, the next call
    for the same key goes back to the network.
    """

    def __init__(
        self,
        api_key: str,
        *,
        endpoint: str = POLLEN_ENDPOINT,
        language_code: str = "en",
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        session: Optional[requests.Session] = None,
        precision: int = KEY_PRECISION,
        max_workers: int = 8,
    ) -> None:
        if not api_key:
            raise ConfigurationError("GOOGLE_POLLEN_API_KEY / GOOGLE_API_KEY missing")
        self._api_key = api_key
        self._endpoint = endpoint
        self._language_code = language_code
        self._timeout = timeout
        self._session = session or requests.Session()
        self._precision = precision
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pollen-fetch")
        self._lock = threading.Lock()
        self._in_flight: Dict[ForecastRequestKey, Future] = {}

    def __repr__(self) -> str:
        return f"ForecastClient(endpoint={self._endpoint!r}, in_flight={self.in_flight})"

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    async def fetch_forecast(self, coordinate: Coordinate, days: int = DEFAULT_FORECAST_DAYS) -> Dict[str, object]:
        """Return the raw JSON payload for ``coordinate``."""

        if days < 1:
            raise ValueError(f"days must be >= 1, got {days}")
        key = ForecastRequestKey.build(coordinate, min(days, MAX_FORECAST_DAYS), self._precision)

        started = False
        with self._lock:
            future = self._in_flight.get(key)
            if future is None or future.done():
                future = self._pool.submit(self._get, key)
                self._in_flight[key] = future
                started = True
        if started:
            future.add_done_callback(lambda done, key=key: self._settle(key, done))
        else:
            logger.debug("[pollen] Joining in-flight request for %s", key)

        # A caller giving up must not cancel the request other callers wait on.
        return await asyncio.shield(asyncio.wrap_future(future))

    def _settle(self, key: ForecastRequestKey, future: Future) -> None:
        with self._lock:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]

    def _redact(self, text: str) -> str:
        if len(self._api_key) >= 6:
            text = text.replace(self._api_key, "***")
        return KEY_PARAM.sub(r"\1***", text)

    def _get(self, key: ForecastRequestKey) -> Dict[str, object]:
        params = {
            "key": self._api_key,
            "location.latitude": key.latitude,
            "location.longitude": key.longitude,
            "days": key.days,
            "languageCode": self._language_code,
            "plantsDescription": "true",
        }
        logger.info("[pollen] GET forecast for (%s, %s) days=%s", key.latitude, key.longitude, key.days)

        try:
            response = self._session.get(self._endpoint, params=params, timeout=self._timeout)
        except requests.RequestException as exc:
            message = self._redact(str(exc))
            logger.error("[pollen] Google API error: %s", message)
            # The original exception text may carry the request URL, key included.
            raise FetchError(None, message) from None

        if not response.ok:
            message = self._redact(_error_message(response))
            logger.error("[pollen] Google API returned %s: %s", response.status_code, message)
            raise FetchError(response.status_code, message)

        try:
            return response.json()
        except ValueError:
            raise MalformedResponse("Pollen forecast response is not valid JSON") from None


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return response.reason or "request failed"


# ---------------------------------------------------------------------------
# Demo data
# ---------------------------------------------------------------------------


def sample_payload(days: int = DEFAULT_FORECAST_DAYS, today=None) -> Dict[str, object]:
    """Canned forecast:lookup response for demo mode and offline runs."""

    today = today or datetime.now(timezone.utc).date()
    types = [("GRASS", "Grass"), ("TREE", "Tree"), ("WEED", "Weed")]
    categories = ["None", "Very Low", "Low", "Moderate", "High", "Very High"]

    daily: List[Dict[str, object]] = []
    for offset in range(max(1, min(days, MAX_FORECAST_DAYS))):
        day = today + timedelta(days=offset)
        pollen = []
        for idx, (code, name) in enumerate(types):
            value = (2 + idx + offset) % 5
            pollen.append(
                {
                    "code": code,
                    "displayName": name,
                    "inSeason": value > 0,
                    "indexInfo": {
                        "code": "UPI",
                        "value": value,
                        "category": categories[value],
                        "indexDescription": f"{name} pollen is {categories[value].lower()} today.",
                    },
                    "healthRecommendations": [
                        "Keep windows closed when pollen counts are high.",
                    ]
                    if value >= 3
                    else [],
                }
            )
        daily.append(
            {
                "date": {"year": day.year, "month": day.month, "day": day.day},
                "pollenTypeInfo": pollen,
                "plantInfo": [
                    {
                        "code": "BIRCH",
                        "displayName": "Birch",
                        "inSeason": True,
                        "plantDescription": {
                            "type": "TREE",
                            "family": "Betulaceae",
                            "season": "Late winter, spring",
                        },
                    },
                    {"code": "RAGWEED", "displayName": "Ragweed", "inSeason": False},
                ],
            }
        )

    return {"regionCode": "demo", "dailyInfo": daily}


class DemoForecastClient:
    """Stand-in client returning ``sample_payload``; only used when demo mode is configured."""

    async def fetch_forecast(self, coordinate: Coordinate, days: int = DEFAULT_FORECAST_DAYS) -> Dict[str, object]:
        if days < 1:
            raise ValueError(f"days must be >= 1, got {days}")
        await asyncio.sleep(0)
        logger.info("[pollen] Demo mode: returning sample forecast for %s", coordinate)
        return sample_payload(days)


def build_forecast_client(settings: Settings, session: Optional[requests.Session] = None):
    if settings.demo_mode:
        return DemoForecastClient()
    if not settings.pollen_api_key:
        raise ConfigurationError(
            "GOOGLE_POLLEN_API_KEY / GOOGLE_API_KEY missing; set POLLEN_DEMO_MODE=1 to use sample data."
        )
    return ForecastClient(
        settings.pollen_api_key,
        language_code=settings.language_code,
        timeout=settings.http_timeout,
        session=session,
    )
