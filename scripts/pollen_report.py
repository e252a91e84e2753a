#!/usr/bin/env python3
"""Print today's pollen report for a location.

Runs the same pipeline as the Streamlit page once and prints the result.

Usage:
  python scripts/pollen_report.py --lat 32.32 --lon 35.32
  python scripts/pollen_report.py --city Houston --json
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

# Make sure the repository root is on sys.path so `pollenwatch` can be imported
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from pollenwatch.config.api_config import configure_logging, load_settings
from pollenwatch.lib.errors import ConfigurationError
from pollenwatch.lib.location import CityPositionSensor, LocationProvider, StaticPositionSensor, sensor_from_settings
from pollenwatch.lib.models import Coordinate
from pollenwatch.lib.pipeline import Failed, PipelineController, Ready
from pollenwatch.lib.pollen_api import build_forecast_client
from pollenwatch.lib.risk import classify


def ready_to_dict(state: Ready) -> dict:
    forecast = state.forecast
    return {
        "date": forecast.date.isoformat(),
        "latitude": state.coordinate.latitude,
        "longitude": state.coordinate.longitude,
        "overall_risk": state.overall_tier.name,
        "pollen_types": [
            {
                "code": reading.code,
                "name": reading.name,
                "index": reading.index_value,
                "category": reading.category,
                "risk": classify(reading.index_value).name,
                "recommendations": list(reading.recommendations),
            }
            for reading in forecast.pollen_types
        ],
        "plants": [
            {"name": plant.name, "type": plant.type, "in_season": plant.in_season}
            for plant in forecast.plants
        ],
    }


def print_report(state: Ready) -> None:
    forecast = state.forecast
    print(f"Pollen report for {state.coordinate} on {forecast.date.isoformat()}")
    print(f"Overall: {state.overall_tier.label}")
    print("---")
    for reading in forecast.visible_pollen_types():
        print(f"{reading.name:<10} {reading.index_value}/5  {reading.category:<10} {classify(reading.index_value).label}")
        for recommendation in reading.recommendations:
            print(f"    - {recommendation}")
    in_season = [plant.name for plant in forecast.plants if plant.in_season]
    if in_season:
        print("---")
        print("In season: " + ", ".join(in_season))


def build_sensor(args, settings):
    if args.lat is not None and args.lon is not None:
        return StaticPositionSensor(Coordinate(args.lat, args.lon))
    if args.city:
        return CityPositionSensor(args.city)
    return sensor_from_settings(settings)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Print today's pollen report for a location.")
    parser.add_argument("--lat", type=float, default=None, help="Latitude in decimal degrees")
    parser.add_argument("--lon", type=float, default=None, help="Longitude in decimal degrees")
    parser.add_argument("--city", "-c", default=None, help="City name to geocode instead of coordinates")
    parser.add_argument("--days", "-d", type=int, default=None, help="Days to request (1..5, today is reported)")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of text")
    args = parser.parse_args(argv)

    if (args.lat is None) != (args.lon is None):
        parser.error("--lat and --lon must be given together")
    if args.days is not None and args.days < 1:
        parser.error("--days must be at least 1")

    try:
        settings = load_settings()
        configure_logging(settings.log_level)
        client = build_forecast_client(settings)
    except ConfigurationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    controller = PipelineController(
        LocationProvider(build_sensor(args, settings)),
        client,
        days=args.days or settings.forecast_days,
        location_timeout_ms=settings.location_timeout_ms,
        location_max_age_ms=settings.location_max_age_ms,
    )
    state = asyncio.run(controller.start())

    if isinstance(state, Failed):
        print(f"ERROR ({state.kind.value}): {state.message}", file=sys.stderr)
        print(state.remediation, file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(ready_to_dict(state), indent=2))
    else:
        print_report(state)
    return 0


if __name__ == "__main__":
    sys.exit(main())
