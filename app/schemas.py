"""Pydantic schemas for the HTTP API and the broadcast channel."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.readings import CanonicalReading, FacilityCandidate, Location


class ReadingSubmission(BaseModel):
    """Body accepted by the manual submission endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    temp: float = Field(..., allow_inf_nan=False)
    shock: Optional[float] = Field(default=None, allow_inf_nan=False)
    humidity: Optional[float] = Field(default=None, allow_inf_nan=False)
    device_id: Optional[str] = Field(default=None, alias="deviceId")
    lat: Optional[float] = Field(default=None, allow_inf_nan=False)
    lng: Optional[float] = Field(default=None, allow_inf_nan=False)


class ReadingMessage(BaseModel):
    """Wire shape of a canonical reading, one JSON object per message."""

    model_config = ConfigDict(populate_by_name=True)

    device_id: str = Field(..., alias="deviceId", min_length=1)
    temp: Optional[float] = None
    humidity: Optional[float] = None
    shock: float = Field(default=0.0, ge=0)
    lat: Optional[float] = None
    lng: Optional[float] = None
    at: datetime
    received_at: Optional[datetime] = Field(default=None, alias="receivedAt")

    @field_validator("at", "received_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        """Naive timestamps are read as UTC so every reading compares cleanly."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @classmethod
    def from_reading(cls, reading: CanonicalReading) -> "ReadingMessage":
        location = reading.location
        return cls(
            device_id=reading.device_id,
            temp=reading.temperature_c,
            humidity=reading.humidity_pct,
            shock=reading.shock_g,
            lat=location.lat if location else None,
            lng=location.lng if location else None,
            at=reading.observed_at,
            received_at=reading.received_at,
        )

    def to_reading(self) -> CanonicalReading:
        return CanonicalReading(
            device_id=self.device_id,
            observed_at=self.at,
            temperature_c=self.temp,
            humidity_pct=self.humidity,
            shock_g=self.shock,
            location=Location.maybe(self.lat, self.lng),
            received_at=self.received_at,
        )

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True)


class SubmissionResponse(BaseModel):
    ok: bool = True
    reading: ReadingMessage


class FacilityOut(BaseModel):
    name: str
    lat: float
    lng: float
    city: str = ""
    state: str = ""
    distance: float = Field(..., ge=0, description="Great-circle distance in miles.")

    @classmethod
    def from_candidate(cls, candidate: FacilityCandidate) -> "FacilityOut":
        facility = candidate.facility
        return cls(
            name=facility.name,
            lat=facility.lat,
            lng=facility.lng,
            city=facility.city,
            state=facility.state,
            distance=candidate.distance_mi,
        )


class NearestFacilitiesResponse(BaseModel):
    items: List[FacilityOut] = Field(default_factory=list)


class RoutePlanResponse(BaseModel):
    """Route between two points; ``straight_line`` marks the fallback."""

    points: List[List[float]]
    polyline: Optional[str] = None
    distance_text: Optional[str] = None
    duration_text: Optional[str] = None
    straight_line: bool = False
    reason: Optional[str] = None


class SerialPortInfo(BaseModel):
    path: str
    manufacturer: Optional[str] = None


class HealthResponse(BaseModel):
    status: str = "ok"
    ingestion: str
    subscribers: int = Field(..., ge=0)
