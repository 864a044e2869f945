"""Pydantic models for request payloads and the federation wire format."""

from __future__ import annotations

import datetime as dt
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, StrictBool, model_validator

from .utils import isoformat

EventType = Literal["limited", "unlimited"]
Visibility = Literal["public", "private", "invite-only"]
LocationType = Literal["none", "text", "maps"]
HealthStatus = Literal["healthy", "unhealthy", "unknown"]


class EventRecord(BaseModel):
    """An event as published on ``/api/federation/events``.

    Local events are rendered through this model too, and records from peers
    are validated against it before they are merged; anything that does not
    fit is dropped.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    date: dt.date
    time: dt.time
    location: str
    location_type: LocationType = "none"
    location_url: str | None = None
    type: EventType
    attendee_limit: PositiveInt | None = None
    visibility: Visibility
    user_id: str
    created_at: str = ""
    updated_at: str = ""
    federation: bool | None = None
    federation_url: str | None = None


class FederatedEventsResponse(BaseModel):
    events: list
    count: int | None = None


class InstanceInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    public_events_count: int = Field(alias="publicEventsCount")


class HealthReport(BaseModel):
    """Body of ``/api/healthz``, or a synthesized failure for a non-2xx reply."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    ok: StrictBool
    response_time: float | None = Field(default=None, alias="responseTime")
    response_time_unit: str | None = Field(default=None, alias="responseTimeUnit")
    error: str | None = None
    message: str | None = None


class InstanceStatus(BaseModel):
    """One row of the instance dashboard."""

    url: str
    name: str | None = None
    events: int | None = None
    health_status: HealthStatus
    response_time: float | None = None
    error: str | None = None


class EventCreatePayload(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    date: dt.date
    time: dt.time
    location: str = Field(default="", max_length=200)
    location_type: LocationType = "none"
    location_url: str | None = Field(default=None, max_length=500)
    type: EventType = "unlimited"
    attendee_limit: PositiveInt | None = None
    visibility: Visibility = "public"

    @model_validator(mode="after")
    def _limited_needs_limit(self):
        if self.type == "limited" and self.attendee_limit is None:
            raise ValueError("attendee_limit is required for limited events")
        return self


class RSVPCreatePayload(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    guests: int = Field(default=0, ge=0, le=10)


def event_record(event) -> EventRecord:
    """Render a local ``models.Event`` in the shared wire shape."""
    return EventRecord(
        id=event.id,
        name=event.name,
        date=event.date,
        time=event.time,
        location=event.location or "",
        location_type=event.location_type,
        location_url=event.location_url,
        type=event.type,
        attendee_limit=event.attendee_limit,
        visibility=event.visibility,
        user_id=event.user_id,
        created_at=isoformat(event.created_at),
        updated_at=isoformat(event.updated_at),
    )
