"""Shared fixtures: fake HTTP session, fake sensors and canned payloads."""

import asyncio
import threading
from typing import Any, Dict, List, Optional

import pytest
import requests

from pollenwatch.lib.models import Coordinate

API_KEY = "AIzaTESTKEY1234567890"


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, reason: str = "OK", text: Optional[str] = None):
        self.status_code = status_code
        self.reason = reason
        self._payload = payload
        self._text = text

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self):
        if self._text is not None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    """Stands in for ``requests.Session``; records every GET."""

    def __init__(self, response: Optional[FakeResponse] = None, error: Optional[Exception] = None):
        self.response = response or FakeResponse(payload=make_payload([4, 2, 1]))
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.gate: Optional[threading.Event] = None
        self._lock = threading.Lock()

    def hold(self) -> threading.Event:
        """Block every GET until the returned event is set."""
        self.gate = threading.Event()
        return self.gate

    def get(self, url, params=None, timeout=None):
        with self._lock:
            self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.response


class FakeSensor:
    def __init__(self, coordinate=None, *, permitted=True, delay=0.0, error=None):
        self.coordinate = coordinate or Coordinate(32.32, 35.32)
        self.permitted = permitted
        self.delay = delay
        self.error = error
        self.permission_requests = 0
        self.position_requests = 0

    async def request_permission(self) -> bool:
        self.permission_requests += 1
        return self.permitted

    async def current_position(self) -> Coordinate:
        self.position_requests += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.coordinate


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def pollen_entry(code: str, value: Optional[int], category: str = "Moderate") -> Dict[str, Any]:
    entry: Dict[str, Any] = {"code": code, "displayName": code.title(), "inSeason": True}
    if value is not None:
        entry["indexInfo"] = {
            "code": "UPI",
            "value": value,
            "category": category,
            "indexDescription": f"{code.title()} description",
        }
        entry["healthRecommendations"] = ["Wear sunglasses outdoors."]
    return entry


def make_payload(values, days: int = 1) -> Dict[str, Any]:
    codes = ["TREE", "GRASS", "WEED", "MOLD", "DUST"]
    day = {
        "date": {"year": 2024, "month": 4, "day": 12},
        "pollenTypeInfo": [pollen_entry(codes[i % len(codes)], v) for i, v in enumerate(values)],
        "plantInfo": [
            {
                "code": "OAK",
                "displayName": "Oak",
                "inSeason": True,
                "plantDescription": {
                    "type": "TREE",
                    "family": "Fagaceae",
                    "season": "Spring",
                    "picture": "https://example.com/oak.jpg",
                },
            }
        ],
    }
    later = [
        {"date": {"year": 2024, "month": 4, "day": 12 + n}, "pollenTypeInfo": [], "plantInfo": []}
        for n in range(1, days)
    ]
    return {"regionCode": "IL", "dailyInfo": [day, *later]}


@pytest.fixture
def coordinate():
    return Coordinate(32.32, 35.32)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport_error():
    return requests.ConnectionError(
        f"HTTPSConnectionPool(host='pollen.googleapis.com'): Max retries exceeded with url: "
        f"/v1/forecast:lookup?key={API_KEY}&location.latitude=32.32"
    )
