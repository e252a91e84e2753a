"""Turn Google Pollen API responses into ``DailyForecast`` records."""

from __future__ import annotations

import logging
import warnings
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

import pandas as pd

from pollenwatch.lib.errors import AnomalousValue, MalformedResponse
from pollenwatch.lib.models import (
    NO_DESCRIPTION,
    NOT_AVAILABLE,
    DailyForecast,
    PlantReading,
    PollenTypeReading,
)
from pollenwatch.lib.risk import INDEX_MAX, INDEX_MIN, classify, overall_tier

logger = logging.getLogger(__name__)


def _entries(day: Mapping[str, Any], field_name: str) -> List[Mapping[str, Any]]:
    raw = day.get(field_name)
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise MalformedResponse(f"'{field_name}' must be an array, got {type(raw).__name__}")
    for position, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            raise MalformedResponse(f"{field_name}[{position}] must be an object, got {type(entry).__name__}")
    return raw


def _text(field_name: str, raw: Any, default: Optional[str] = None) -> Optional[str]:
    if isinstance(raw, str) and raw:
        return raw
    if raw is not None and raw != "":
        logger.warning("[pollen] Ignoring %s of type %s", field_name, type(raw).__name__)
    return default


def _parse_date(day: Mapping[str, Any]) -> date:
    date_obj = day.get("date")
    if not isinstance(date_obj, Mapping):
        raise MalformedResponse("dailyInfo[0].date is missing")
    try:
        return date(int(date_obj["year"]), int(date_obj["month"]), int(date_obj["day"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedResponse(f"dailyInfo[0].date is invalid: {date_obj!r}") from exc


def _index_value(name: str, raw: Any) -> tuple[int, bool]:
    """Return the index as an int in 0-5 and whether it had to be corrected."""
    if raw is None:
        return 0, False
    try:
        if isinstance(raw, float) and not raw.is_integer():
            value = round(raw)
            logger.warning("[pollen] %s index %r is not a whole number; rounded to %s", name, raw, value)
            warnings.warn(f"{name} index {raw!r} rounded to {value}", AnomalousValue, stacklevel=3)
            return max(INDEX_MIN, min(INDEX_MAX, value)), True
        value = int(raw)
    except (TypeError, ValueError, OverflowError):
        logger.warning("[pollen] %s index %r is not a number; using 0", name, raw)
        warnings.warn(f"{name} index {raw!r} is not a number", AnomalousValue, stacklevel=3)
        return 0, True
    if value < INDEX_MIN or value > INDEX_MAX:
        clamped = max(INDEX_MIN, min(INDEX_MAX, value))
        logger.warning("[pollen] %s index %s outside %s-%s; clamped to %s", name, value, INDEX_MIN, INDEX_MAX, clamped)
        warnings.warn(f"{name} index {value} clamped to {clamped}", AnomalousValue, stacklevel=3)
        return clamped, True
    return value, False


def _recommendations(raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        logger.warning("[pollen] Ignoring healthRecommendations of type %s", type(raw).__name__)
        return ()
    return tuple(text for text in raw if isinstance(text, str) and text)


def _pollen_reading(entry: Mapping[str, Any]) -> PollenTypeReading:
    code = _text("code", entry.get("code"))
    name = _text("displayName", entry.get("displayName"), code or "Unknown")
    index_info = entry.get("indexInfo") or {}
    if not isinstance(index_info, Mapping):
        index_info = {}

    value, anomalous = _index_value(name, index_info.get("value"))
    in_season = entry.get("inSeason")
    return PollenTypeReading(
        name=name,
        index_value=value,
        category=_text("category", index_info.get("category"), NOT_AVAILABLE),
        description=_text("indexDescription", index_info.get("indexDescription"), NO_DESCRIPTION),
        recommendations=_recommendations(entry.get("healthRecommendations")),
        code=code,
        in_season=bool(in_season) if in_season is not None else None,
        anomalous=anomalous,
    )


def _plant_reading(entry: Mapping[str, Any]) -> PlantReading:
    code = _text("code", entry.get("code"))
    desc = entry.get("plantDescription") or {}
    if not isinstance(desc, Mapping):
        desc = {}

    return PlantReading(
        name=_text("displayName", entry.get("displayName"), code or "Unknown"),
        type=_text("type", desc.get("type"), NOT_AVAILABLE),
        season=_text("season", desc.get("season")),
        description=_text("description", desc.get("description")),
        picture_url=_text("picture", desc.get("picture")),
        family=_text("family", desc.get("family")),
        code=code,
        in_season=bool(entry.get("inSeason", False)),
    )


def normalize(raw_payload: Any) -> DailyForecast:
    """Normalize a forecast:lookup response into today's ``DailyForecast``.

    Only ``dailyInfo[0]`` is kept; later days are ignored. Missing optional
    fields get defaults, structural problems raise ``MalformedResponse``.
    """

    if not isinstance(raw_payload, Mapping):
        raise MalformedResponse(f"Expected a JSON object, got {type(raw_payload).__name__}")

    daily = raw_payload.get("dailyInfo")
    if not isinstance(daily, list):
        raise MalformedResponse("'dailyInfo' is missing or not an array")
    if not daily:
        raise MalformedResponse("'dailyInfo' is empty")

    today = daily[0]
    if not isinstance(today, Mapping):
        raise MalformedResponse("dailyInfo[0] is not an object")

    forecast = DailyForecast(
        date=_parse_date(today),
        pollen_types=tuple(_pollen_reading(e) for e in _entries(today, "pollenTypeInfo")),
        plants=tuple(_plant_reading(e) for e in _entries(today, "plantInfo")),
        region_code=_text("regionCode", raw_payload.get("regionCode")),
    )
    if len(daily) > 1:
        logger.debug("[pollen] Ignoring %d later forecast day(s)", len(daily) - 1)
    return forecast


def forecast_to_frame(forecast: DailyForecast) -> pd.DataFrame:
    """Row-per-pollen-type frame for charts and tables."""

    rows: List[Dict[str, object]] = []
    for reading in forecast.pollen_types:
        rows.append(
            {
                "date": pd.Timestamp(forecast.date),
                "code": reading.code,
                "pollen_type": reading.name,
                "index": reading.index_value,
                "category": reading.category,
                "risk": classify(reading.index_value).label,
                "in_season": reading.in_season,
            }
        )
    columns = ["date", "code", "pollen_type", "index", "category", "risk", "in_season"]
    return pd.DataFrame(rows, columns=columns)


def summarize(forecast: DailyForecast, city: Optional[str] = None) -> str:
    """One-line summary, e.g. ``Grass Moderate (3), Tree Low (1) -> Moderate Risk``."""

    parts = [
        f"{reading.name} {reading.category} ({reading.index_value})"
        for reading in forecast.visible_pollen_types()
    ]
    tier = overall_tier(forecast.pollen_types)
    where = f" in {city}" if city else ""
    body = ", ".join(parts) if parts else "no pollen measured"
    return f"Pollen{where} on {forecast.date.isoformat()}: {body} -> {tier.label}"
