"""State machine sequencing location → fetch → normalize → classify."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Union

from pollenwatch.config.api_config import (
    DEFAULT_FORECAST_DAYS,
    DEFAULT_LOCATION_MAX_AGE_MS,
    DEFAULT_LOCATION_TIMEOUT_MS,
)
from pollenwatch.lib.errors import FailureKind, PollenError
from pollenwatch.lib.location import LocationProvider
from pollenwatch.lib.models import Coordinate, DailyForecast
from pollenwatch.lib.normalize import normalize
from pollenwatch.lib.risk import RiskTier, overall_tier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Locating:
    pass


@dataclass(frozen=True)
class Fetching:
    coordinate: Coordinate


@dataclass(frozen=True)
class Ready:
    forecast: DailyForecast
    overall_tier: RiskTier
    coordinate: Coordinate


@dataclass(frozen=True)
class Failed:
    error: PollenError

    @property
    def kind(self) -> FailureKind:
        return self.error.kind

    @property
    def message(self) -> str:
        return str(self.error)

    @property
    def remediation(self) -> str:
        return self.error.remediation


PipelineState = Union[Idle, Locating, Fetching, Ready, Failed]
Listener = Callable[[PipelineState], Any]


class InvalidTransition(RuntimeError):
    pass


class PipelineController:
    """Runs one pollen session and publishes each state to subscribers.

    ``start`` leaves ``Idle``, ``retry`` leaves ``Failed`` and ``refresh``
    leaves ``Ready``; anything else raises ``InvalidTransition``. Retries are
    never automatic. After ``dispose`` late stage results are dropped.
    """

    def __init__(
        self,
        location_provider: LocationProvider,
        forecast_client,
        *,
        days: int = DEFAULT_FORECAST_DAYS,
        location_timeout_ms: int = DEFAULT_LOCATION_TIMEOUT_MS,
        location_max_age_ms: int = DEFAULT_LOCATION_MAX_AGE_MS,
        normalizer: Callable[[Dict[str, object]], DailyForecast] = normalize,
    ) -> None:
        self._location = location_provider
        self._client = forecast_client
        self._days = days
        self._location_timeout_ms = location_timeout_ms
        self._location_max_age_ms = location_max_age_ms
        self._normalize = normalizer
        self._state: PipelineState = Idle()
        self._listeners: List[Listener] = []
        self._run_id = 0
        self._disposed = False

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def disposed(self) -> bool:
        return self._disposed

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispose(self) -> None:
        self._disposed = True
        self._listeners.clear()
        logger.debug("[pipeline] Disposed in state %s", type(self._state).__name__)

    def _publish(self, state: PipelineState) -> None:
        self._state = state
        logger.info("[pipeline] -> %s", type(state).__name__)
        for listener in list(self._listeners):
            listener(state)

    def _stale(self, run_id: int) -> bool:
        return self._disposed or run_id != self._run_id

    async def start(self) -> PipelineState:
        return await self._enter(Idle, "start")

    async def retry(self) -> PipelineState:
        return await self._enter(Failed, "retry")

    async def refresh(self) -> PipelineState:
        return await self._enter(Ready, "refresh")

    async def _enter(self, expected: type, trigger: str) -> PipelineState:
        if self._disposed:
            raise InvalidTransition(f"Cannot {trigger}: controller disposed")
        if not isinstance(self._state, expected):
            raise InvalidTransition(
                f"Cannot {trigger} from {type(self._state).__name__}; expected {expected.__name__}"
            )
        self._run_id += 1
        await self._run(self._run_id)
        return self._state

    async def _run(self, run_id: int) -> None:
        self._publish(Locating())
        try:
            coordinate = await self._location.acquire_location(
                self._location_timeout_ms, self._location_max_age_ms
            )
        except PollenError as exc:
            if not self._stale(run_id):
                logger.warning("[pipeline] Location failed: %s", exc)
                self._publish(Failed(exc))
            return
        if self._stale(run_id):
            logger.debug("[pipeline] Dropping late location result")
            return

        self._publish(Fetching(coordinate))
        try:
            payload = await self._client.fetch_forecast(coordinate, self._days)
            forecast = self._normalize(payload)
        except PollenError as exc:
            if not self._stale(run_id):
                logger.warning("[pipeline] Forecast failed: %s", exc)
                self._publish(Failed(exc))
            return
        if self._stale(run_id):
            logger.debug("[pipeline] Dropping late forecast result")
            return

        self._publish(Ready(forecast, overall_tier(forecast.pollen_types), coordinate))
