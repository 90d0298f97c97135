"""Stateful reading processing and threshold alerting for one connection."""

from __future__ import annotations

import logging
import math
import zlib
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from itertools import count
from threading import Lock
from typing import Callable, Deque, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from app.schemas import ReadingMessage
from models.readings import (
    Alert,
    AlertKind,
    AlertSeverity,
    CanonicalReading,
    DeviceSnapshot,
    Location,
    PathPoint,
    ShockEvent,
    ShockSeverity,
)
from settings import get_settings

logger = logging.getLogger(__name__)

MAX_RECENT_SHOCKS = 20
MAX_ALERTS = 50
MAX_PATH_POINTS = 500
PATH_EPSILON_DEG = 1e-5

# Synthetic trail anchor (San Francisco) and drift per two-second tick.
_SYNTHETIC_ORIGIN = (37.7749, -122.4194)
_SYNTHETIC_TICK_S = 2.0


@dataclass(frozen=True)
class ShockThresholds:
    warning_g: float = 1.5
    alert_g: float = 2.5

    def __post_init__(self) -> None:
        if self.alert_g < self.warning_g:
            raise ValueError("alert threshold must not be below warning threshold")

    def classify(self, g_force: float) -> ShockSeverity:
        if g_force >= self.alert_g:
            return ShockSeverity.alert
        if g_force >= self.warning_g:
            return ShockSeverity.warning
        return ShockSeverity.ok


@dataclass(frozen=True)
class TemperatureRange:
    min_c: float
    max_c: float

    def contains(self, value: float) -> bool:
        return self.min_c <= value <= self.max_c

    def describe(self) -> str:
        return f"{self.min_c:g}-{self.max_c:g}°C"


DEFAULT_SAFE_RANGE = TemperatureRange(2.0, 6.0)

# Devices currently paired with a payload, and hypothermic storage ranges
# per organ type.
DEFAULT_DEVICE_ORGANS: Dict[str, str] = {
    "DEV-001": "heart",
    "DEV-002": "liver",
    "DEV-003": "kidney",
}
DEFAULT_ORGAN_RANGES: Dict[str, TemperatureRange] = {
    "heart": TemperatureRange(2.0, 6.0),
    "liver": TemperatureRange(2.0, 6.0),
    "kidney": TemperatureRange(2.0, 6.0),
}


@dataclass
class SafeRangeTable:
    """Resolves the safe temperature range for a device via its organ type."""

    default: TemperatureRange = DEFAULT_SAFE_RANGE
    device_organs: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_DEVICE_ORGANS))
    organ_ranges: Mapping[str, TemperatureRange] = field(
        default_factory=lambda: dict(DEFAULT_ORGAN_RANGES)
    )

    def organ_for(self, device_id: str) -> Optional[str]:
        return self.device_organs.get(device_id)

    def resolve(self, device_id: str) -> TemperatureRange:
        organ = self.organ_for(device_id)
        if organ is None:
            return self.default
        return self.organ_ranges.get(organ, self.default)


@dataclass(frozen=True)
class SessionView:
    """Immutable snapshot of the processor state handed to readers."""

    snapshot: DeviceSnapshot = field(default_factory=DeviceSnapshot)
    shocks: Tuple[ShockEvent, ...] = ()
    alerts: Tuple[Alert, ...] = ()
    path: Tuple[PathPoint, ...] = ()

    @property
    def location(self) -> Optional[Location]:
        return self.snapshot.location

    @property
    def latest_alert(self) -> Optional[Alert]:
        return self.alerts[0] if self.alerts else None

    @property
    def critical_count(self) -> int:
        return sum(1 for alert in self.alerts if alert.severity is AlertSeverity.critical)

    @property
    def warning_count(self) -> int:
        return sum(1 for alert in self.alerts if alert.severity is AlertSeverity.warning)

    @property
    def is_empty(self) -> bool:
        return (
            self.snapshot == DeviceSnapshot()
            and not self.shocks
            and not self.alerts
            and not self.path
        )


@dataclass
class _SessionState:
    snapshot: DeviceSnapshot = field(default_factory=DeviceSnapshot)
    shocks: Deque[ShockEvent] = field(default_factory=lambda: deque(maxlen=MAX_RECENT_SHOCKS))
    alerts: Deque[Alert] = field(default_factory=lambda: deque(maxlen=MAX_ALERTS))
    path: Deque[PathPoint] = field(default_factory=lambda: deque(maxlen=MAX_PATH_POINTS))
    started_at: Optional[datetime] = None
    has_real_fix: bool = False


def synthetic_point(device_id: str, elapsed_s: float) -> Tuple[float, float]:
    """Deterministic stand-in position for devices without GPS."""
    phase = (zlib.crc32(device_id.encode("utf-8")) % 628) / 100.0
    tick = max(elapsed_s, 0.0) / _SYNTHETIC_TICK_S
    lat = _SYNTHETIC_ORIGIN[0] + 0.00005 * tick + 0.0005 * math.sin(tick * 0.1 + phase)
    lng = _SYNTHETIC_ORIGIN[1] + 0.00003 * tick + 0.0005 * math.cos(tick * 0.08 + phase)
    return lat, lng


Listener = Callable[[SessionView], None]


class ReadingProcessor:
    """Aggregates readings into rolling state and raises threshold alerts.

    One processor serves one logical subscriber connection. Only the
    delivery path writes to it; ``view`` and ``reset`` share a lock so a
    reader never sees a half-cleared state.

    Alerts are never deduplicated: every violating reading appends a new
    alert.
    """

    def __init__(
        self,
        thresholds: Optional[ShockThresholds] = None,
        safe_ranges: Optional[SafeRangeTable] = None,
        synthesize_path: bool = True,
    ) -> None:
        self.thresholds = thresholds or ShockThresholds()
        self.safe_ranges = safe_ranges or SafeRangeTable()
        self.synthesize_path = synthesize_path
        self._state = _SessionState()
        self._lock = Lock()
        self._ids = count(1)
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def view(self) -> SessionView:
        with self._lock:
            return self._freeze()

    def reset(self) -> None:
        with self._lock:
            self._state = _SessionState()
            view = self._freeze()
        logger.info("Session state reset")
        self._notify(view)

    def ingest_message(self, raw: Union[str, bytes]) -> bool:
        """Parse a broadcast message and ingest it; malformed messages are skipped."""
        try:
            message = ReadingMessage.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning(
                "Ignoring invalid broadcast message",
                extra={"reason": f"{exc.error_count()} validation error(s)"},
            )
            return False
        self.ingest(message.to_reading())
        return True

    def ingest(self, reading: CanonicalReading) -> SessionView:
        with self._lock:
            self._apply(reading)
            view = self._freeze()
        self._notify(view)
        return view

    def _apply(self, reading: CanonicalReading) -> None:
        state = self._state
        at = reading.timestamp
        # Everything that can fail on the reading runs before state changes.
        elapsed = (at - state.started_at).total_seconds() if state.started_at else 0.0
        if state.started_at is None:
            state.started_at = at

        shock_event: Optional[ShockEvent] = None
        if reading.shock_g > 0:
            shock_event = self._record_shock(reading, at)

        previous = state.snapshot
        state.snapshot = replace(
            previous,
            device_id=reading.device_id,
            temperature_c=(
                reading.temperature_c if reading.temperature_c is not None else previous.temperature_c
            ),
            humidity_pct=(
                reading.humidity_pct if reading.humidity_pct is not None else previous.humidity_pct
            ),
            last_shock=shock_event or previous.last_shock,
            last_reading_at=at,
            location=reading.location or previous.location,
        )

        self._record_position(reading, at, elapsed)

        if reading.temperature_c is not None:
            self._check_temperature(reading.device_id, reading.temperature_c, at)

    def _record_shock(self, reading: CanonicalReading, at: datetime) -> ShockEvent:
        severity = self.thresholds.classify(reading.shock_g)
        event = ShockEvent(
            id=next(self._ids),
            device_id=reading.device_id,
            g_force=reading.shock_g,
            at=at,
            severity=severity,
        )
        self._state.shocks.appendleft(event)
        if severity is not ShockSeverity.ok:
            alert_severity = (
                AlertSeverity.critical if severity is ShockSeverity.alert else AlertSeverity.warning
            )
            self._raise_alert(
                AlertKind.shock,
                alert_severity,
                f"{reading.device_id}: Shock event {reading.shock_g:.1f}g detected",
                at,
            )
        return event

    def _record_position(self, reading: CanonicalReading, at: datetime, elapsed: float) -> None:
        state = self._state
        if reading.location is not None:
            state.has_real_fix = True
            self._append_point(PathPoint(reading.location.lat, reading.location.lng, at))
            return
        if not self.synthesize_path or state.has_real_fix:
            return
        lat, lng = synthetic_point(reading.device_id, elapsed)
        self._append_point(PathPoint(lat, lng, at, synthetic=True))

    def _append_point(self, point: PathPoint) -> None:
        path = self._state.path
        if path:
            last = path[-1]
            if (
                abs(last.lat - point.lat) < PATH_EPSILON_DEG
                and abs(last.lng - point.lng) < PATH_EPSILON_DEG
            ):
                return
        path.append(point)

    def _check_temperature(self, device_id: str, temperature: float, at: datetime) -> None:
        safe = self.safe_ranges.resolve(device_id)
        if safe.contains(temperature):
            return
        direction = "above" if temperature > safe.max_c else "below"
        organ = self.safe_ranges.organ_for(device_id)
        label = f"{device_id} ({organ.title()})" if organ else device_id
        self._raise_alert(
            AlertKind.temperature,
            AlertSeverity.critical,
            f"{label}: Temperature {temperature:.1f}°C {direction} safe range ({safe.describe()})",
            at,
        )

    def _raise_alert(
        self, kind: AlertKind, severity: AlertSeverity, message: str, at: datetime
    ) -> None:
        alert = Alert(id=next(self._ids), kind=kind, severity=severity, message=message, at=at)
        self._state.alerts.appendleft(alert)
        logger.warning(
            message,
            extra={"alert_kind": kind.value, "severity": severity.value},
        )

    def _freeze(self) -> SessionView:
        state = self._state
        return SessionView(
            snapshot=state.snapshot,
            shocks=tuple(state.shocks),
            alerts=tuple(state.alerts),
            path=tuple(state.path),
        )

    def _notify(self, view: SessionView) -> None:
        for listener in self._listeners:
            listener(view)


def build_default_processor() -> ReadingProcessor:
    """Factory that wires a processor from settings; one per connection."""
    settings = get_settings()
    return ReadingProcessor(
        thresholds=ShockThresholds(settings.shock_warning_g, settings.shock_alert_g),
        safe_ranges=SafeRangeTable(
            default=TemperatureRange(settings.temp_safe_min_c, settings.temp_safe_max_c),
        ),
        synthesize_path=settings.synthesize_path,
    )
