"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


DEFAULT_DEVICE_ID = "DEV-001"


class ShockSeverity(str, Enum):
    """Classification of a single shock event."""

    ok = "ok"
    warning = "warning"
    alert = "alert"


class AlertKind(str, Enum):
    temperature = "temperature"
    shock = "shock"


class AlertSeverity(str, Enum):
    warning = "warning"
    critical = "critical"


@dataclass(frozen=True, slots=True)
class Location:
    lat: float
    lng: float

    @staticmethod
    def is_valid(lat: float, lng: float) -> bool:
        return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0

    @classmethod
    def maybe(cls, lat: Optional[float], lng: Optional[float]) -> Optional["Location"]:
        """Build a location only when both coordinates exist and are in range."""
        if lat is None or lng is None:
            return None
        if not cls.is_valid(lat, lng):
            return None
        return cls(lat=lat, lng=lng)


@dataclass(frozen=True, slots=True)
class CanonicalReading:
    """A normalized telemetry record.

    ``received_at`` stays ``None`` until the hub broadcasts the reading; the
    hub stamps a copy rather than mutating the original.
    """

    device_id: str
    observed_at: datetime
    temperature_c: Optional[float] = None
    humidity_pct: Optional[float] = None
    shock_g: float = 0.0
    location: Optional[Location] = None
    received_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.device_id:
            raise ValueError("device_id must be non-empty")
        if self.shock_g < 0:
            raise ValueError("shock_g must not be negative")

    @property
    def timestamp(self) -> datetime:
        return self.received_at or self.observed_at


@dataclass(frozen=True, slots=True)
class ShockEvent:
    id: int
    device_id: str
    g_force: float
    at: datetime
    severity: ShockSeverity


@dataclass(frozen=True, slots=True)
class Alert:
    id: int
    kind: AlertKind
    severity: AlertSeverity
    message: str
    at: datetime


@dataclass(frozen=True, slots=True)
class PathPoint:
    lat: float
    lng: float
    at: datetime
    synthetic: bool = False


@dataclass(frozen=True, slots=True)
class DeviceSnapshot:
    """Latest known values for the primary device."""

    device_id: Optional[str] = None
    temperature_c: Optional[float] = None
    humidity_pct: Optional[float] = None
    last_shock: Optional[ShockEvent] = None
    last_reading_at: Optional[datetime] = None
    location: Optional[Location] = None


@dataclass(frozen=True, slots=True)
class Facility:
    name: str
    lat: float
    lng: float
    city: str = ""
    state: str = ""


@dataclass(frozen=True, slots=True)
class FacilityCandidate:
    facility: Facility
    distance_mi: float
