"""HTTP and websocket route definitions for the service."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Optional, Tuple

from fastapi import (
    APIRouter,
    Body,
    Depends,
    HTTPException,
    Query,
    WebSocket,
    WebSocketDisconnect,
    status,
)

from app.schemas import (
    FacilityOut,
    HealthResponse,
    NearestFacilitiesResponse,
    ReadingMessage,
    RoutePlanResponse,
    SerialPortInfo,
    SubmissionResponse,
)
from services.errors import InvalidPayload
from services.facilities import FacilityIndex, build_default_index
from services.hub import BroadcastHub, Subscriber, build_default_hub
from services.ingestion import IngestionSourceAdapter, build_default_ingestion, list_serial_ports
from services.routing import RoutingClient, build_default_routing_client, plan_route

logger = logging.getLogger(__name__)

router = APIRouter()


def get_hub() -> BroadcastHub:
    return build_default_hub()


def get_index() -> FacilityIndex:
    return build_default_index()


def get_ingestion() -> Optional[IngestionSourceAdapter]:
    return build_default_ingestion()


def get_routing_client() -> RoutingClient:
    return build_default_routing_client()


def _parse_point(value: str, name: str) -> Tuple[float, float]:
    try:
        lat_raw, lng_raw = value.split(",")
        lat, lng = float(lat_raw), float(lng_raw)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{name} must be formatted as 'lat,lng'.",
        ) from exc
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{name} is out of range.",
        )
    return lat, lng


@router.post(
    "/api/readings",
    response_model=SubmissionResponse,
    summary="Submit a reading manually and broadcast it to subscribers.",
)
async def submit_reading(
    payload: Any = Body(None),
    hub: BroadcastHub = Depends(get_hub),
) -> SubmissionResponse:
    try:
        reading = hub.submit_reading(payload)
    except InvalidPayload as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return SubmissionResponse(reading=ReadingMessage.from_reading(reading))


@router.get(
    "/api/facilities/nearest",
    response_model=NearestFacilitiesResponse,
    summary="Nearest facilities to a point, closest first.",
)
async def nearest_facilities(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    limit: int = Query(5, ge=1, le=50),
    index: FacilityIndex = Depends(get_index),
) -> NearestFacilitiesResponse:
    candidates = index.nearest(lat, lng, limit)
    return NearestFacilitiesResponse(
        items=[FacilityOut.from_candidate(candidate) for candidate in candidates]
    )


@router.get(
    "/api/directions",
    response_model=RoutePlanResponse,
    summary="Route between two points, falling back to a straight line.",
)
def directions(
    origin: str = Query(..., description="Origin as 'lat,lng'."),
    destination: str = Query(..., description="Destination as 'lat,lng'."),
    client: RoutingClient = Depends(get_routing_client),
) -> RoutePlanResponse:
    plan = plan_route(
        client,
        _parse_point(origin, "origin"),
        _parse_point(destination, "destination"),
    )
    return RoutePlanResponse(
        points=[[lat, lng] for lat, lng in plan.points],
        polyline=plan.polyline,
        distance_text=plan.distance_text,
        duration_text=plan.duration_text,
        straight_line=plan.straight_line,
        reason=plan.reason,
    )


@router.get(
    "/api/ports",
    response_model=list[SerialPortInfo],
    summary="List serial ports available for ingestion.",
)
def serial_ports() -> list[SerialPortInfo]:
    return list_serial_ports()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(
    hub: BroadcastHub = Depends(get_hub),
    ingestion: Optional[IngestionSourceAdapter] = Depends(get_ingestion),
) -> HealthResponse:
    mode = ingestion.status.value if ingestion is not None else "manual-only"
    return HealthResponse(ingestion=mode, subscribers=hub.subscriber_count)


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status; stream readings from /ws."}


async def _pump(websocket: WebSocket, subscriber: Subscriber) -> None:
    while True:
        payload = await subscriber.get()
        await websocket.send_text(payload)


@router.websocket("/ws")
async def reading_stream(
    websocket: WebSocket,
    hub: BroadcastHub = Depends(get_hub),
) -> None:
    # Register before accepting so a client that sees the handshake complete
    # is already in the subscriber set.
    subscriber = hub.subscribe()
    sender: Optional[asyncio.Task[None]] = None
    try:
        await websocket.accept()
        sender = asyncio.create_task(_pump(websocket, subscriber))
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.unsubscribe(subscriber)
        if sender is not None:
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
                await sender
