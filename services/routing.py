"""Thin client for a turn-by-turn routing service, with straight-line fallback."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Tuple

import httpx

from services.errors import NoRoute, RoutingUnavailable, ServiceUnavailable
from settings import get_settings

logger = logging.getLogger(__name__)

DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"

Point = Tuple[float, float]


@dataclass(frozen=True)
class Route:
    polyline: str
    distance_text: str
    duration_text: str


@dataclass(frozen=True)
class RoutePlan:
    points: List[Point]
    polyline: Optional[str] = None
    distance_text: Optional[str] = None
    duration_text: Optional[str] = None
    straight_line: bool = False
    reason: Optional[str] = None


def decode_polyline(encoded: str) -> List[Point]:
    """Decode an encoded polyline (precision 1e-5) into ``(lat, lng)`` pairs."""
    points: List[Point] = []
    index = 0
    lat = 0
    lng = 0
    length = len(encoded)

    def _next_value() -> int:
        nonlocal index
        result = 0
        shift = 0
        while True:
            if index >= length:
                raise ValueError("Truncated polyline.")
            byte = ord(encoded[index]) - 63
            index += 1
            result |= (byte & 0x1F) << shift
            shift += 5
            if byte < 0x20:
                break
        return ~(result >> 1) if result & 1 else result >> 1

    while index < length:
        lat += _next_value()
        lng += _next_value()
        points.append((lat / 1e5, lng / 1e5))
    return points


class RoutingClient:
    """Fetches driving directions from the Google Directions API."""

    def __init__(
        self,
        api_key: Optional[str],
        client: Optional[httpx.Client] = None,
        base_url: str = DIRECTIONS_URL,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._client = client or httpx.Client(timeout=10.0)

    def close(self) -> None:
        self._client.close()

    def directions(
        self, origin_lat: float, origin_lng: float, dest_lat: float, dest_lng: float
    ) -> Route:
        if not self._api_key:
            raise ServiceUnavailable("Routing is not configured (missing GOOGLE_MAPS_API_KEY).")

        params = {
            "origin": f"{origin_lat},{origin_lng}",
            "destination": f"{dest_lat},{dest_lng}",
            "mode": "driving",
            "key": self._api_key,
        }
        try:
            response = self._client.get(self._base_url, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise ServiceUnavailable(f"Routing request failed: {exc}") from exc
        except ValueError as exc:
            raise ServiceUnavailable("Routing service returned invalid JSON.") from exc

        status = data.get("status")
        if status in {"ZERO_RESULTS", "NOT_FOUND"}:
            raise NoRoute(f"No route found ({status}).")
        if status != "OK" or not data.get("routes"):
            message = data.get("error_message") or status or "unknown status"
            raise ServiceUnavailable(f"Routing service error: {message}")

        route = data["routes"][0]
        leg = (route.get("legs") or [{}])[0]
        return Route(
            polyline=(route.get("overview_polyline") or {}).get("points", ""),
            distance_text=(leg.get("distance") or {}).get("text", ""),
            duration_text=(leg.get("duration") or {}).get("text", ""),
        )


def plan_route(client: RoutingClient, origin: Point, destination: Point) -> RoutePlan:
    """Ask the routing client for a route; fall back to a straight line."""
    try:
        route = client.directions(origin[0], origin[1], destination[0], destination[1])
        points = decode_polyline(route.polyline) if route.polyline else []
    except (RoutingUnavailable, ValueError) as exc:
        logger.info("Routing unavailable; using straight line", extra={"reason": str(exc)})
        return RoutePlan(points=[origin, destination], straight_line=True, reason=str(exc))

    if len(points) < 2:
        points = [origin, destination]
    return RoutePlan(
        points=points,
        polyline=route.polyline,
        distance_text=route.distance_text,
        duration_text=route.duration_text,
    )


@lru_cache
def build_default_routing_client() -> RoutingClient:
    return RoutingClient(api_key=get_settings().maps_api_key)
