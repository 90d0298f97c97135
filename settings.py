from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_SERIAL_PORT_ENV = "SERIAL_PORT"
_SERIAL_BAUD_ENV = "SERIAL_BAUD"
_DEFAULT_DEVICE_ENV = "DEFAULT_DEVICE_ID"
_QUEUE_SIZE_ENV = "SUBSCRIBER_QUEUE_SIZE"
_RECONNECT_DELAY_ENV = "RECONNECT_DELAY_SECONDS"
_SHOCK_WARNING_ENV = "SHOCK_WARNING_G"
_SHOCK_ALERT_ENV = "SHOCK_ALERT_G"
_TEMP_MIN_ENV = "TEMP_SAFE_MIN_C"
_TEMP_MAX_ENV = "TEMP_SAFE_MAX_C"
_SYNTHESIZE_PATH_ENV = "SYNTHESIZE_PATH"
_FACILITIES_PATH_ENV = "FACILITIES_PATH"
_MAPS_KEY_ENV = "GOOGLE_MAPS_API_KEY"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    serial_port: Optional[str]
    serial_baud: int
    default_device_id: str
    subscriber_queue_size: int
    reconnect_delay: float
    shock_warning_g: float
    shock_alert_g: float
    temp_safe_min_c: float
    temp_safe_max_c: float
    synthesize_path: bool
    facilities_path: Optional[str]
    maps_api_key: Optional[str]
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_float(name: str, default: float, minimum: float = 0.0) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUTHY:
        return True
    if candidate in _FALSY:
        return False
    return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    shock_warning = _read_float(_SHOCK_WARNING_ENV, 1.5)
    shock_alert = _read_float(_SHOCK_ALERT_ENV, 2.5)
    if shock_alert < shock_warning:
        shock_warning, shock_alert = 1.5, 2.5

    temp_min = _read_float(_TEMP_MIN_ENV, 2.0, minimum=-273.15)
    temp_max = _read_float(_TEMP_MAX_ENV, 6.0, minimum=-273.15)
    if temp_max < temp_min:
        temp_min, temp_max = 2.0, 6.0

    return Settings(
        serial_port=_read_optional_env(_SERIAL_PORT_ENV, None),
        serial_baud=_read_positive_int(_SERIAL_BAUD_ENV, 9600),
        default_device_id=_read_str_env(_DEFAULT_DEVICE_ENV, "DEV-001"),
        subscriber_queue_size=_read_positive_int(_QUEUE_SIZE_ENV, 32),
        reconnect_delay=_read_float(_RECONNECT_DELAY_ENV, 3.0),
        shock_warning_g=shock_warning,
        shock_alert_g=shock_alert,
        temp_safe_min_c=temp_min,
        temp_safe_max_c=temp_max,
        synthesize_path=_read_bool(_SYNTHESIZE_PATH_ENV, True),
        facilities_path=_read_optional_env(_FACILITIES_PATH_ENV, "./data/facilities.json"),
        maps_api_key=_read_optional_env(_MAPS_KEY_ENV, None),
        log_level=_read_log_level("INFO"),
    )
