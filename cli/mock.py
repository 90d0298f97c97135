"""Simulated device readings for exercising the bridge without hardware."""

from __future__ import annotations

import math
import random
from typing import Any, Dict, Iterator, Optional

START_LAT = 37.7749
START_LNG = -122.4194


def mock_readings(
    device_id: str = "DEV-001",
    rng: Optional[random.Random] = None,
) -> Iterator[Dict[str, Any]]:
    """Yield submission payloads drifting north from San Francisco.

    Temperature oscillates around 4°C, humidity around 45%, and roughly one
    reading in twenty carries a shock between 0.5g and 2.5g.
    """
    rng = rng or random.Random()
    lat = START_LAT
    lng = START_LNG
    tick = 0
    while True:
        temp = 4.0 + math.sin(tick * 0.1) * 1.5 + (rng.random() - 0.5) * 0.3
        humidity = 45 + math.sin(tick * 0.05) * 5
        shock = rng.random() * 2 + 0.5 if rng.random() < 0.05 else 0.0
        lat += 0.0001 * (0.5 + math.sin(tick * 0.1) * 0.5)
        lng += 0.0001 * (0.3 + math.cos(tick * 0.08) * 0.3)
        yield {
            "temp": round(temp, 2),
            "shock": round(shock, 2),
            "humidity": round(humidity, 1),
            "lat": round(lat, 6),
            "lng": round(lng, 6),
            "deviceId": device_id,
        }
        tick += 1
