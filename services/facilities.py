"""Static facility set with nearest-neighbour lookup."""

from __future__ import annotations

import json
import logging
import math
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from models.readings import Facility, FacilityCandidate
from settings import get_settings

logger = logging.getLogger(__name__)

EARTH_RADIUS_MI = 3959.0


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # Rounding can push ``a`` past 1 for near-antipodal points.
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_MI * c


class FacilityIndex:
    """Read-only list of facilities; safe to query from any thread."""

    def __init__(self, facilities: Iterable[Facility] = ()) -> None:
        self._facilities: tuple[Facility, ...] = tuple(facilities)

    def __len__(self) -> int:
        return len(self._facilities)

    @property
    def facilities(self) -> Sequence[Facility]:
        return self._facilities

    def nearest(self, lat: float, lng: float, k: int = 5) -> list[FacilityCandidate]:
        """Return the ``k`` closest facilities, ties kept in list order."""
        if k <= 0 or not self._facilities:
            return []
        candidates = [
            FacilityCandidate(
                facility=facility,
                distance_mi=haversine_miles(lat, lng, facility.lat, facility.lng),
            )
            for facility in self._facilities
        ]
        candidates.sort(key=lambda candidate: candidate.distance_mi)
        return candidates[:k]


def _facility_from_entry(entry: Any) -> Facility:
    if not isinstance(entry, dict):
        raise ValueError("entry is not an object")
    name = str(entry.get("name") or "").strip()
    if not name:
        raise ValueError("missing name")
    lat = float(entry["lat"])
    lng = float(entry["lng"])
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        raise ValueError("coordinates out of range")
    return Facility(
        name=name,
        lat=lat,
        lng=lng,
        city=str(entry.get("city") or ""),
        state=str(entry.get("state") or ""),
    )


def load_facilities(path: Path) -> list[Facility]:
    """Load a precomputed facility list, skipping malformed entries."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"Facility file {path} must contain a JSON list.")

    facilities: list[Facility] = []
    for position, entry in enumerate(data):
        try:
            facilities.append(_facility_from_entry(entry))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "Skipping malformed facility entry",
                extra={"line": position, "reason": str(exc)},
            )
    return facilities


@lru_cache
def build_default_index(path: Optional[str] = None) -> FacilityIndex:
    settings = get_settings()
    facilities_path = settings.facilities_path if path is None else path
    if not facilities_path:
        return FacilityIndex()
    try:
        facilities = load_facilities(Path(facilities_path))
    except (OSError, ValueError) as exc:
        logger.warning(
            "Facility dataset unavailable; redirect suggestions disabled",
            extra={"reason": str(exc)},
        )
        return FacilityIndex()
    logger.info("Loaded %d facilities", len(facilities))
    return FacilityIndex(facilities)
