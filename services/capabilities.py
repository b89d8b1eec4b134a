"""Device capabilities the completion tracker depends on.

Location and signature capture happen on the contractor's or homeowner's
device; the core only sees what they report. Routes build the static
adapters below from request data, tests build them directly.
"""

from typing import Protocol

from errors import LocationUnavailableError
from schemas.marketplace import GeoPoint, LocationReport


class LocationProvider(Protocol):
    def current_location(self) -> GeoPoint | None:
        """Current fix. Raises LocationUnavailableError or returns None on denial."""
        ...


class SignatureCapture(Protocol):
    def capture(self) -> str:
        """Opaque reference to a captured signature blob."""
        ...


class FixedLocation:
    """A location already reported by the device."""

    def __init__(self, latitude: float, longitude: float, accuracy: float | None = None):
        self.point = GeoPoint(latitude=latitude, longitude=longitude, accuracy=accuracy)

    def current_location(self) -> GeoPoint:
        return self.point


class DeniedLocation:
    """The device refused or failed to provide a location."""

    def __init__(self, reason: str = "permission denied"):
        self.reason = reason

    def current_location(self) -> GeoPoint:
        raise LocationUnavailableError(f"Location unavailable: {self.reason}", {"reason": self.reason})


class StaticSignature:
    def __init__(self, reference: str):
        self.reference = reference

    def capture(self) -> str:
        return self.reference


def location_from_report(report: LocationReport) -> LocationProvider:
    """Adapter for a client-side location report (fix or error)."""
    if report.location is None:
        return DeniedLocation(report.error or "no location reported")
    point = report.location
    return FixedLocation(point.latitude, point.longitude, point.accuracy)
