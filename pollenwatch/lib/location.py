"""Acquire the user's position as a single awaitable with timeout and caching."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Protocol, Tuple

from geopy.exc import (
    GeocoderAuthenticationFailure,
    GeocoderInsufficientPrivileges,
    GeocoderServiceError,
    GeocoderTimedOut,
)
from geopy.geocoders import Nominatim

from pollenwatch.config.api_config import (
    DEFAULT_LOCATION_MAX_AGE_MS,
    DEFAULT_LOCATION_TIMEOUT_MS,
    NOMINATIM_USER_AGENT,
    Settings,
)
from pollenwatch.lib.errors import (
    LocationDenied,
    LocationTimeout,
    LocationUnavailable,
    LocationUnsupported,
)
from pollenwatch.lib.models import Coordinate

logger = logging.getLogger(__name__)


class PositionSensor(Protocol):
    async def request_permission(self) -> bool:
        ...

    async def current_position(self) -> Coordinate:
        ...


class StaticPositionSensor:
    """Position given up front (config or command line)."""

    def __init__(self, coordinate: Coordinate, *, permitted: bool = True) -> None:
        self.coordinate = coordinate
        self.permitted = permitted

    async def request_permission(self) -> bool:
        return self.permitted

    async def current_position(self) -> Coordinate:
        return self.coordinate


class CityPositionSensor:
    """Resolve a typed city name to coordinates with Nominatim."""

    def __init__(self, city: str, geolocator=None, *, timeout: int = 10) -> None:
        self.city = city.strip()
        self.geolocator = geolocator or Nominatim(user_agent=NOMINATIM_USER_AGENT)
        self.timeout = timeout

    async def request_permission(self) -> bool:
        return True

    async def current_position(self) -> Coordinate:
        return await asyncio.to_thread(self._geocode)

    def _geocode(self) -> Coordinate:
        if not self.city:
            raise LocationUnavailable("No city name given")
        try:
            loc = self.geolocator.geocode(self.city, timeout=self.timeout)
        except GeocoderTimedOut:
            raise LocationTimeout(f"Geocoder timed out resolving {self.city!r}") from None
        except (GeocoderInsufficientPrivileges, GeocoderAuthenticationFailure) as exc:
            raise LocationDenied(f"Geocoder refused the request: {exc}") from None
        except GeocoderServiceError as exc:
            raise LocationUnavailable(f"Geocoder error for {self.city!r}: {exc}") from None
        if not loc:
            raise LocationUnavailable(f"Could not find a location named {self.city!r}")
        return Coordinate(loc.latitude, loc.longitude)


class LocationProvider:
    """Wraps a ``PositionSensor``.

    Permission is requested at most once per provider; a refusal is remembered.
    A fix younger than ``max_cache_age_ms`` is reused instead of asking again.
    """

    def __init__(
        self,
        sensor: Optional[PositionSensor],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sensor = sensor
        self._clock = clock
        self._permission: Optional[bool] = None
        self._permission_request: Optional[asyncio.Future] = None
        self._fix: Optional[Tuple[Coordinate, float]] = None

    def _cached(self, max_cache_age_ms: int) -> Optional[Coordinate]:
        if self._fix is None:
            return None
        coordinate, taken_at = self._fix
        age_ms = (self._clock() - taken_at) * 1000.0
        if age_ms <= max_cache_age_ms:
            return coordinate
        return None

    async def _ensure_permission(self) -> None:
        if self._permission is None:
            if self._permission_request is None:
                logger.info("[location] Requesting location permission")
                self._permission_request = asyncio.ensure_future(self._sensor.request_permission())
            self._permission = bool(await self._permission_request)
        if not self._permission:
            raise LocationDenied("Location permission was denied")

    async def acquire_location(
        self,
        timeout_ms: int = DEFAULT_LOCATION_TIMEOUT_MS,
        max_cache_age_ms: int = DEFAULT_LOCATION_MAX_AGE_MS,
    ) -> Coordinate:
        if self._sensor is None:
            raise LocationUnsupported("No location source is available")

        cached = self._cached(max_cache_age_ms)
        if cached is not None:
            logger.debug("[location] Reusing cached fix %s", cached)
            return cached

        await self._ensure_permission()

        try:
            coordinate = await asyncio.wait_for(self._sensor.current_position(), timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            raise LocationTimeout(f"No position fix within {timeout_ms} ms") from None

        self._fix = (coordinate, self._clock())
        logger.info("[location] Got fix %s", coordinate)
        return coordinate


def sensor_from_settings(settings: Settings, geolocator=None) -> Optional[PositionSensor]:
    """Coordinates win over a city name; neither configured means no sensor."""

    if settings.latitude is not None and settings.longitude is not None:
        return StaticPositionSensor(Coordinate(settings.latitude, settings.longitude))
    if settings.city:
        return CityPositionSensor(settings.city, geolocator=geolocator)
    return None
