from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_WS_URL = "ws://localhost:8000/ws"
DEFAULT_MOCK_INTERVAL = 2.0

_BASE_URL_ENV = "API_BASE_URL"
_WS_URL_ENV = "HUB_WS_URL"
_MOCK_INTERVAL_ENV = "CLI_MOCK_INTERVAL"


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    ws_url: str = DEFAULT_WS_URL
    mock_interval: float = DEFAULT_MOCK_INTERVAL


def _read_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def load_config(
    base_url: Optional[str] = None,
    ws_url: Optional[str] = None,
    mock_interval: Optional[float] = None,
) -> CLIConfig:
    url = base_url or os.getenv(_BASE_URL_ENV) or DEFAULT_BASE_URL
    stream_url = ws_url or os.getenv(_WS_URL_ENV) or DEFAULT_WS_URL
    if mock_interval is None:
        mock_interval = _read_float(os.getenv(_MOCK_INTERVAL_ENV), DEFAULT_MOCK_INTERVAL)
    return CLIConfig(
        base_url=url.rstrip("/"),
        ws_url=stream_url,
        mock_interval=mock_interval,
    )
