# lib/geocode.py
"""Reverse geocoding for display purposes only (the city shown next to the report)."""

import logging

from geopy.exc import GeopyError
from geopy.geocoders import GoogleV3, Nominatim

from pollenwatch.config.api_config import NOMINATIM_USER_AGENT

logger = logging.getLogger(__name__)

UNKNOWN_LOCATION = "Unknown location"


def build_geolocator(api_key=None):
    """GoogleV3 when a reverse-geocoding key is configured, Nominatim otherwise."""
    if api_key:
        return GoogleV3(api_key=api_key)
    return Nominatim(user_agent=NOMINATIM_USER_AGENT)


def _city_from_google(raw):
    for component in raw.get("address_components", []):
        if "locality" in component.get("types", []):
            return component.get("long_name")
    for component in raw.get("address_components", []):
        if "administrative_area_level_1" in component.get("types", []):
            return component.get("long_name")
    return None


def _city_from_nominatim(raw):
    address = raw.get("address") or {}
    return (
        address.get("city")
        or address.get("town")
        or address.get("village")
        or address.get("state")
    )


def reverse_geocode(coordinate, geolocator=None, timeout=10):
    """Convert coordinates → nearest city/state name."""
    geolocator = geolocator or build_geolocator()
    try:
        location = geolocator.reverse((coordinate.latitude, coordinate.longitude), timeout=timeout, language="en")
    except GeopyError as exc:
        logger.warning("[geocode] Reverse lookup failed for %s: %s", coordinate, type(exc).__name__)
        return UNKNOWN_LOCATION
    if not location:
        return UNKNOWN_LOCATION

    raw = location.raw or {}
    city = _city_from_google(raw) if "address_components" in raw else _city_from_nominatim(raw)
    return city or UNKNOWN_LOCATION
