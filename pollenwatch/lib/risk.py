"""Map Universal Pollen Index values (0-5) to allergy risk tiers."""

from __future__ import annotations

from enum import IntEnum
from typing import Iterable

from pollenwatch.lib.models import PollenTypeReading

INDEX_MIN = 0
INDEX_MAX = 5

LOW_MAX = 2
MODERATE_MAX = 4


class RiskTier(IntEnum):
    LOW = 0
    MODERATE = 1
    HIGH = 2

    @property
    def label(self) -> str:
        return {
            RiskTier.LOW: "Low Risk",
            RiskTier.MODERATE: "Moderate Risk",
            RiskTier.HIGH: "High Risk",
        }[self]

    @property
    def color(self) -> str:
        return {
            RiskTier.LOW: "#2ecc71",
            RiskTier.MODERATE: "#f1c40f",
            RiskTier.HIGH: "#e74c3c",
        }[self]


def clamp_index(value: int) -> int:
    return max(INDEX_MIN, min(INDEX_MAX, int(value)))


def classify(index_value: int) -> RiskTier:
    """Return the risk tier for one pollen index, clamping to 0-5 first."""
    value = clamp_index(index_value)
    if value <= LOW_MAX:
        return RiskTier.LOW
    if value <= MODERATE_MAX:
        return RiskTier.MODERATE
    return RiskTier.HIGH


def overall_tier(readings: Iterable[PollenTypeReading]) -> RiskTier:
    """Highest tier across readings; LOW when there are none."""
    return max((classify(r.index_value) for r in readings), default=RiskTier.LOW)
