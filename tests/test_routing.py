"""Tests for the directions client and the straight-line fallback."""

from __future__ import annotations

import httpx
import pytest

from services.errors import NoRoute, ServiceUnavailable
from services.routing import RoutingClient, decode_polyline, plan_route

ENCODED = "_p~iF~ps|U_ulLnnqC_mqNvxq`@"
ORIGIN = (37.7749, -122.4194)
DESTINATION = (37.7557, -122.4048)


def _client(handler, api_key: str = "test-key") -> RoutingClient:
    return RoutingClient(api_key=api_key, client=httpx.Client(transport=httpx.MockTransport(handler)))


def _ok_payload() -> dict:
    return {
        "status": "OK",
        "routes": [
            {
                "overview_polyline": {"points": ENCODED},
                "legs": [{"distance": {"text": "2.1 mi"}, "duration": {"text": "9 mins"}}],
            }
        ],
    }


def test_decode_polyline_known_vector() -> None:
    points = decode_polyline(ENCODED)

    assert points == [
        pytest.approx((38.5, -120.2)),
        pytest.approx((40.7, -120.95)),
        pytest.approx((43.252, -126.453)),
    ]


def test_decode_polyline_rejects_truncated_input() -> None:
    with pytest.raises(ValueError):
        decode_polyline("_p~iF~ps|U_")


def test_directions_sends_coordinates_and_parses_route() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, json=_ok_payload())

    route = _client(handler).directions(*ORIGIN, *DESTINATION)

    assert route.polyline == ENCODED
    assert route.distance_text == "2.1 mi"
    assert route.duration_text == "9 mins"
    assert seen["origin"] == "37.7749,-122.4194"
    assert seen["destination"] == "37.7557,-122.4048"
    assert seen["key"] == "test-key"


@pytest.mark.parametrize("status", ["ZERO_RESULTS", "NOT_FOUND"])
def test_directions_without_route_raises_no_route(status: str) -> None:
    client = _client(lambda request: httpx.Response(200, json={"status": status, "routes": []}))

    with pytest.raises(NoRoute):
        client.directions(*ORIGIN, *DESTINATION)


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"status": "REQUEST_DENIED", "error_message": "bad key"}),
        httpx.Response(503, text="unavailable"),
        httpx.Response(200, text="<html>"),
    ],
)
def test_directions_service_failures(response: httpx.Response) -> None:
    client = _client(lambda request: response)

    with pytest.raises(ServiceUnavailable):
        client.directions(*ORIGIN, *DESTINATION)


def test_directions_transport_error_is_service_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(ServiceUnavailable):
        _client(handler).directions(*ORIGIN, *DESTINATION)


def test_directions_without_api_key_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not run
        raise AssertionError("no request expected")

    with pytest.raises(ServiceUnavailable):
        _client(handler, api_key="").directions(*ORIGIN, *DESTINATION)


def test_plan_route_uses_decoded_polyline() -> None:
    plan = plan_route(_client(lambda request: httpx.Response(200, json=_ok_payload())), ORIGIN, DESTINATION)

    assert plan.straight_line is False
    assert len(plan.points) == 3
    assert plan.distance_text == "2.1 mi"
    assert plan.reason is None


def test_plan_route_falls_back_to_straight_line() -> None:
    client = _client(lambda request: httpx.Response(200, json={"status": "ZERO_RESULTS"}))

    plan = plan_route(client, ORIGIN, DESTINATION)

    assert plan.straight_line is True
    assert plan.points == [ORIGIN, DESTINATION]
    assert plan.reason is not None and "ZERO_RESULTS" in plan.reason
