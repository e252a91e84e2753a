"""PipelineController state machine."""

import asyncio

import pytest

from conftest import API_KEY, FakeResponse, FakeSensor, FakeSession, make_payload
from pollenwatch.lib.errors import FailureKind, FetchError, LocationDenied, MalformedResponse
from pollenwatch.lib.location import LocationProvider
from pollenwatch.lib.models import Coordinate
from pollenwatch.lib.pipeline import (
    Failed,
    Fetching,
    Idle,
    InvalidTransition,
    Locating,
    PipelineController,
    Ready,
)
from pollenwatch.lib.pollen_api import ForecastClient
from pollenwatch.lib.risk import RiskTier


class ScriptedClient:
    """Forecast client returning queued payloads or raising queued errors."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
        self.gate = None

    async def fetch_forecast(self, coordinate, days=1):
        self.calls.append((coordinate, days))
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def build(sensor=None, client=None, **kwargs):
    controller = PipelineController(
        LocationProvider(sensor or FakeSensor()),
        client or ScriptedClient(make_payload([4, 2, 1])),
        **kwargs,
    )
    seen = []
    controller.subscribe(seen.append)
    return controller, seen


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_moderate_scenario(self):
        session = FakeSession()
        client = ForecastClient(API_KEY, session=session)
        controller, seen = build(FakeSensor(Coordinate(32.32, 35.32)), client)

        state = await controller.start()

        assert isinstance(state, Ready)
        assert state.overall_tier is RiskTier.MODERATE
        assert state.coordinate == Coordinate(32.32, 35.32)
        assert [p.index_value for p in state.forecast.pollen_types] == [4, 2, 1]
        assert seen == [Locating(), Fetching(Coordinate(32.32, 35.32)), state]
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_starts_idle(self):
        controller, seen = build()
        assert isinstance(controller.state, Idle)
        assert seen == []

    @pytest.mark.asyncio
    async def test_empty_pollen_types_is_low(self):
        controller, _ = build(client=ScriptedClient(make_payload([])))
        state = await controller.start()
        assert isinstance(state, Ready)
        assert state.overall_tier is RiskTier.LOW

    @pytest.mark.asyncio
    async def test_wrong_typed_recommendations_still_reach_ready(self):
        payload = make_payload([3])
        payload["dailyInfo"][0]["pollenTypeInfo"][0]["healthRecommendations"] = 7
        controller, seen = build(client=ScriptedClient(payload))

        state = await controller.start()

        assert isinstance(state, Ready)
        assert state.forecast.pollen_types[0].recommendations == ()
        assert controller.state is state

    @pytest.mark.asyncio
    async def test_days_are_forwarded(self):
        client = ScriptedClient(make_payload([1], days=3))
        controller, _ = build(client=client, days=3)
        await controller.start()
        assert client.calls[0][1] == 3


class TestFailures:
    @pytest.mark.asyncio
    async def test_location_denied_never_fetches(self):
        client = ScriptedClient(make_payload([1]))
        controller, seen = build(FakeSensor(permitted=False), client)

        state = await asyncio.wait_for(controller.start(), timeout=1)

        assert isinstance(state, Failed)
        assert isinstance(state.error, LocationDenied)
        assert state.kind is FailureKind.LOCATION
        assert client.calls == []
        assert seen == [Locating(), state]

    @pytest.mark.asyncio
    async def test_fetch_error_is_service_failure(self):
        controller, seen = build(client=ScriptedClient(FetchError(503, "unavailable")))
        state = await controller.start()
        assert isinstance(state, Failed)
        assert state.kind is FailureKind.SERVICE
        assert isinstance(seen[1], Fetching)

    @pytest.mark.asyncio
    async def test_malformed_payload_is_data_failure(self):
        controller, _ = build(client=ScriptedClient({"dailyInfo": []}))
        state = await controller.start()
        assert isinstance(state, Failed)
        assert isinstance(state.error, MalformedResponse)
        assert state.kind is FailureKind.DATA
        assert "report" in state.remediation.lower()

    @pytest.mark.asyncio
    async def test_non_object_pollen_entry_is_data_failure(self):
        payload = make_payload([3])
        payload["dailyInfo"][0]["pollenTypeInfo"].append(None)
        controller, _ = build(client=ScriptedClient(payload))
        state = await controller.start()
        assert isinstance(state, Failed)
        assert state.kind is FailureKind.DATA

    @pytest.mark.asyncio
    async def test_http_failure_through_real_client(self, coordinate):
        session = FakeSession(response=FakeResponse(status_code=500, payload={}, reason="Internal Server Error"))
        controller, _ = build(client=ForecastClient(API_KEY, session=session))
        state = await controller.start()
        assert isinstance(state, Failed)
        assert state.error.status == 500


class TestTransitions:
    @pytest.mark.asyncio
    async def test_retry_after_failure(self):
        client = ScriptedClient(FetchError(None, "connection reset"), make_payload([5]))
        controller, seen = build(client=client)

        assert isinstance(await controller.start(), Failed)
        state = await controller.retry()

        assert isinstance(state, Ready)
        assert state.overall_tier is RiskTier.HIGH
        assert [type(s) for s in seen] == [Locating, Fetching, Failed, Locating, Fetching, Ready]

    @pytest.mark.asyncio
    async def test_no_automatic_retry(self):
        client = ScriptedClient(FetchError(None, "connection reset"))
        controller, _ = build(client=client)
        await controller.start()
        await asyncio.sleep(0.01)
        assert len(client.calls) == 1
        assert isinstance(controller.state, Failed)

    @pytest.mark.asyncio
    async def test_refresh_from_ready(self):
        client = ScriptedClient(make_payload([1]), make_payload([3]))
        controller, _ = build(client=client)
        await controller.start()
        state = await controller.refresh()
        assert state.overall_tier is RiskTier.MODERATE
        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_invalid_triggers(self):
        controller, _ = build()
        with pytest.raises(InvalidTransition):
            await controller.retry()
        with pytest.raises(InvalidTransition):
            await controller.refresh()

        await controller.start()
        with pytest.raises(InvalidTransition):
            await controller.start()
        with pytest.raises(InvalidTransition):
            await controller.retry()

    @pytest.mark.asyncio
    async def test_cannot_restart_while_fetching(self):
        client = ScriptedClient(make_payload([1]))
        client.gate = asyncio.Event()
        controller, _ = build(client=client)

        run = asyncio.ensure_future(controller.start())
        await asyncio.sleep(0.01)
        assert isinstance(controller.state, Fetching)
        with pytest.raises(InvalidTransition):
            await controller.start()

        client.gate.set()
        assert isinstance(await run, Ready)

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        controller = PipelineController(LocationProvider(FakeSensor()), ScriptedClient(make_payload([1])))
        seen = []
        unsubscribe = controller.subscribe(seen.append)
        unsubscribe()
        await controller.start()
        assert seen == []


class TestDisposal:
    @pytest.mark.asyncio
    async def test_late_forecast_discarded_after_dispose(self):
        client = ScriptedClient(make_payload([5]))
        client.gate = asyncio.Event()
        controller, seen = build(client=client)

        run = asyncio.ensure_future(controller.start())
        await asyncio.sleep(0.01)
        assert isinstance(controller.state, Fetching)

        controller.dispose()
        client.gate.set()
        await run

        assert isinstance(controller.state, Fetching)
        assert not any(isinstance(s, Ready) for s in seen)

    @pytest.mark.asyncio
    async def test_late_location_discarded_after_dispose(self):
        client = ScriptedClient(make_payload([1]))
        controller, seen = build(FakeSensor(delay=0.05), client)

        run = asyncio.ensure_future(controller.start())
        await asyncio.sleep(0.01)
        controller.dispose()
        await run

        assert isinstance(controller.state, Locating)
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_late_failure_discarded_after_dispose(self):
        client = ScriptedClient(FetchError(502, "bad gateway"))
        client.gate = asyncio.Event()
        controller, seen = build(client=client)

        run = asyncio.ensure_future(controller.start())
        await asyncio.sleep(0.01)
        controller.dispose()
        client.gate.set()
        await run

        assert isinstance(controller.state, Fetching)
        assert not any(isinstance(s, Failed) for s in seen)

    @pytest.mark.asyncio
    async def test_disposed_controller_rejects_triggers(self):
        controller, _ = build()
        controller.dispose()
        with pytest.raises(InvalidTransition):
            await controller.start()
        assert controller.disposed
