"""Error types raised by the pollen pipeline.

Every failure the pipeline can end in derives from ``PollenError`` and carries a
``kind`` so the page can tell "no location" apart from "service unreachable"
and "malformed data".
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    LOCATION = "location"
    SERVICE = "service"
    DATA = "data"
    CONFIG = "config"


class PollenError(Exception):
    """Base class for pipeline failures."""

    kind: FailureKind = FailureKind.DATA
    remediation: str = "Please report this problem."

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__doc__ or self.__class__.__name__)
        self.message = message or str(self.args[0])


# ---------------------------------------------------------------------------
# Location acquisition
# ---------------------------------------------------------------------------


class LocationError(PollenError):
    kind = FailureKind.LOCATION
    remediation = "Check the location settings and try again."


class LocationUnsupported(LocationError):
    """No location source is available."""

    remediation = "Enter a city or coordinates instead."


class LocationDenied(LocationError):
    """Permission to read the location was refused."""

    remediation = "Grant location permission, then try again."


class LocationTimeout(LocationError):
    """No position fix was obtained in time."""

    remediation = "Try again, or enter a city or coordinates instead."


class LocationUnavailable(LocationError):
    """The location source could not produce a position."""

    remediation = "Check the city name or coordinates and try again."


# ---------------------------------------------------------------------------
# Forecast service
# ---------------------------------------------------------------------------


class FetchError(PollenError):
    """The pollen forecast service could not be reached."""

    kind = FailureKind.SERVICE
    remediation = "The pollen service is unreachable right now. Try again later."

    def __init__(self, status: Optional[int], message: str) -> None:
        self.status = status
        label = f"HTTP {status}" if status is not None else "transport error"
        super().__init__(f"{label}: {message}")
        self.message = message

    def __repr__(self) -> str:
        return f"FetchError(status={self.status!r}, message={self.message!r})"


class MalformedResponse(PollenError):
    """The forecast payload did not have the expected structure."""

    kind = FailureKind.DATA
    remediation = "The pollen service returned unexpected data. Please report this problem."


class ConfigurationError(PollenError):
    """The process configuration is missing or invalid."""

    kind = FailureKind.CONFIG
    remediation = "Fix the configuration (.env) and restart."


class AnomalousValue(UserWarning):
    """An upstream index fell outside 0-5 and was clamped. Logged, never raised."""
