"""Value objects shared by the pollen pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Tuple

NOT_AVAILABLE = "N/A"
NO_DESCRIPTION = "No description available."

# 4 decimals is roughly 11 m, well inside the resolution of the forecast grid.
KEY_PRECISION = 4


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        lat = float(self.latitude)
        lon = float(self.longitude)
        if not -90.0 <= lat <= 90.0:
            raise ValueError(f"Latitude must be within [-90, 90], got {lat}")
        if not -180.0 <= lon <= 180.0:
            raise ValueError(f"Longitude must be within [-180, 180], got {lon}")
        object.__setattr__(self, "latitude", lat)
        object.__setattr__(self, "longitude", lon)

    def rounded(self, precision: int = KEY_PRECISION) -> "Coordinate":
        return Coordinate(round(self.latitude, precision), round(self.longitude, precision))

    def __str__(self) -> str:
        return f"({self.latitude:.4f}, {self.longitude:.4f})"


@dataclass(frozen=True)
class ForecastRequestKey:
    """Identity of one forecast request, used to deduplicate in-flight fetches."""

    latitude: float
    longitude: float
    days: int

    @classmethod
    def build(cls, coordinate: Coordinate, days: int, precision: int = KEY_PRECISION) -> "ForecastRequestKey":
        rounded = coordinate.rounded(precision)
        return cls(latitude=rounded.latitude, longitude=rounded.longitude, days=int(days))


@dataclass(frozen=True)
class PollenTypeReading:
    name: str
    index_value: int = 0
    category: str = NOT_AVAILABLE
    description: str = NO_DESCRIPTION
    recommendations: Tuple[str, ...] = ()
    code: Optional[str] = None
    in_season: Optional[bool] = None
    anomalous: bool = False


@dataclass(frozen=True)
class PlantReading:
    name: str
    type: str = NOT_AVAILABLE
    season: Optional[str] = None
    description: Optional[str] = None
    picture_url: Optional[str] = None
    family: Optional[str] = None
    code: Optional[str] = None
    in_season: bool = False


@dataclass(frozen=True)
class DailyForecast:
    date: date
    pollen_types: Tuple[PollenTypeReading, ...] = field(default_factory=tuple)
    plants: Tuple[PlantReading, ...] = field(default_factory=tuple)
    region_code: Optional[str] = None

    def visible_pollen_types(self) -> Tuple[PollenTypeReading, ...]:
        """Readings worth showing: the provider marks unmeasured types with category N/A."""
        return tuple(p for p in self.pollen_types if p.category != NOT_AVAILABLE)
