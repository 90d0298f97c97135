"""Turn raw device lines into canonical readings."""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from models.readings import DEFAULT_DEVICE_ID, CanonicalReading, Location
from services.errors import UnrecognizedFormat

_NUMBER = r"[-+]?\d+(?:\.\d+)?"

_TEXT_LINE = re.compile(
    rf"^Shock:\s*(?P<shock>{_NUMBER})\s*"
    rf"\|\s*Temp:\s*(?P<temp>{_NUMBER})\s*C\s*"
    rf"\|\s*Humidity:\s*(?P<humidity>{_NUMBER})\s*%\s*"
    rf"(?:\|\s*Lat:\s*(?P<lat>{_NUMBER})\s*\|\s*Lng:\s*(?P<lng>{_NUMBER})\s*)?$",
    re.IGNORECASE,
)

_TEMPERATURE_KEYS = ("temp", "temperature")
_SHOCK_KEYS = ("shock", "gForce")


@dataclass(frozen=True, slots=True)
class Parsed:
    reading: CanonicalReading


@dataclass(frozen=True, slots=True)
class NoMatch:
    reason: str


ParseResult = Union[Parsed, NoMatch]
LineParser = Callable[[str, datetime, str], ParseResult]


class _BadNumber(ValueError):
    pass


def _coerce_number(value: Any) -> Optional[float]:
    """Coerce JSON values the way a loosely typed device would send them."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise _BadNumber(f"boolean is not a number: {value!r}")
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            return None
        try:
            number = float(candidate)
        except ValueError as exc:
            raise _BadNumber(f"not a number: {value!r}") from exc
    else:
        raise _BadNumber(f"not a number: {value!r}")
    if not math.isfinite(number):
        raise _BadNumber(f"non-finite number: {value!r}")
    return number


def _first_present(payload: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def _parse_observed_at(value: Any, fallback: datetime) -> datetime:
    if not isinstance(value, str) or not value.strip():
        return fallback
    candidate = value.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_structured(line: str, now: datetime, default_device_id: str) -> ParseResult:
    """Parse a JSON object line such as ``{"temp": 4.2, "shock": 0}``."""
    if not line.startswith("{"):
        return NoMatch("not a JSON object")
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as exc:
        return NoMatch(f"invalid JSON: {exc.msg}")
    if not isinstance(payload, dict):
        return NoMatch("JSON value is not an object")

    try:
        temperature = _coerce_number(_first_present(payload, _TEMPERATURE_KEYS))
        shock = _coerce_number(_first_present(payload, _SHOCK_KEYS))
        humidity = _coerce_number(payload.get("humidity"))
        lat = _coerce_number(payload.get("lat"))
        lng = _coerce_number(payload.get("lng"))
    except _BadNumber as exc:
        return NoMatch(str(exc))

    device_id = payload.get("deviceId")
    if not isinstance(device_id, str) or not device_id.strip():
        device_id = default_device_id

    return Parsed(
        CanonicalReading(
            device_id=device_id.strip(),
            observed_at=_parse_observed_at(payload.get("at"), now),
            temperature_c=temperature,
            humidity_pct=humidity,
            shock_g=abs(shock) if shock is not None else 0.0,
            location=Location.maybe(lat, lng),
        )
    )


def parse_text(line: str, now: datetime, default_device_id: str) -> ParseResult:
    """Parse ``Shock: 0.3 | Temp: 4.1C | Humidity: 45%`` with optional GPS."""
    match = _TEXT_LINE.match(line)
    if match is None:
        return NoMatch("does not match text grammar")

    lat = match.group("lat")
    lng = match.group("lng")
    location = None
    if lat is not None and lng is not None:
        location = Location.maybe(float(lat), float(lng))

    return Parsed(
        CanonicalReading(
            device_id=default_device_id,
            observed_at=now,
            temperature_c=float(match.group("temp")),
            humidity_pct=float(match.group("humidity")),
            shock_g=abs(float(match.group("shock"))),
            location=location,
        )
    )


DEFAULT_PARSERS: tuple[LineParser, ...] = (parse_structured, parse_text)


def normalize_line(
    line: str,
    *,
    now: Optional[datetime] = None,
    default_device_id: str = DEFAULT_DEVICE_ID,
    parsers: Sequence[LineParser] = DEFAULT_PARSERS,
) -> CanonicalReading:
    """Run the parser chain and return the first successful reading.

    Raises :class:`UnrecognizedFormat` when every parser declines the line.
    """
    candidate = line.strip()
    timestamp = now or datetime.now(timezone.utc)
    reasons: list[str] = []
    for parser in parsers:
        result = parser(candidate, timestamp, default_device_id)
        if isinstance(result, Parsed):
            return result.reading
        reasons.append(result.reason)
    raise UnrecognizedFormat(candidate, reasons)
