"""CRUD helpers for events, RSVPs, and invite tokens."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from .models import EVENT_TYPES, LOCATION_TYPES, RSVP, VISIBILITIES, Event, InviteToken
from .utils import (
    calculate_token_expiration,
    generate_event_id,
    generate_invite_token,
    utcnow,
)

DISCOVERABLE_VISIBILITIES = ("public", "invite-only")
MAX_GUESTS = 10


class EventFullError(ValueError):
    """Raised when an RSVP would exceed a limited event's capacity."""


class DuplicateRSVPError(ValueError):
    """Raised when a name is already on the attendee list."""


class PermissionDeniedError(Exception):
    """Raised when a user tries to modify a record they do not own."""


def _choice(value: str | None, allowed: tuple[str, ...], *, field: str, default: str | None = None) -> str:
    normalized = (value or "").strip().lower() or default
    if normalized not in allowed:
        raise ValueError(f"Invalid {field}: {value!r}")
    return normalized


def create_event(
    session: Session,
    *,
    name: str,
    date: date,
    time: time,
    location: str,
    user_id: str,
    type: str = "unlimited",
    attendee_limit: int | None = None,
    visibility: str = "public",
    location_type: str = "none",
    location_url: str | None = None,
) -> Event:
    """Create and persist a new event."""
    name = (name or "").strip()
    if not name:
        raise ValueError("Event name is required")
    event_type = _choice(type, EVENT_TYPES, field="event type")
    if event_type == "limited":
        if attendee_limit is None or attendee_limit <= 0:
            raise ValueError("Limited events need a positive attendee limit")
    else:
        attendee_limit = None

    event = Event(
        id=_unused_event_id(session),
        name=name,
        date=date,
        time=time,
        location=(location or "").strip(),
        location_type=_choice(
            location_type, LOCATION_TYPES, field="location type", default="none"
        ),
        location_url=(location_url or "").strip() or None,
        type=event_type,
        attendee_limit=attendee_limit,
        user_id=user_id,
        visibility=_choice(visibility, VISIBILITIES, field="visibility", default="public"),
    )
    session.add(event)
    session.flush()
    return event


def _unused_event_id(session: Session) -> str:
    while True:
        candidate = generate_event_id()
        if session.get(Event, candidate) is None:
            return candidate


def get_event(session: Session, event_id: str) -> Event | None:
    return session.get(Event, event_id)


def list_user_events(session: Session, user_id: str) -> Sequence[Event]:
    stmt = (
        select(Event)
        .where(Event.user_id == user_id)
        .order_by(Event.created_at.desc())
    )
    return session.scalars(stmt).all()


def list_discover_events(session: Session) -> Sequence[Event]:
    """Public and invite-only events, newest first."""
    stmt = (
        select(Event)
        .where(Event.visibility.in_(DISCOVERABLE_VISIBILITIES))
        .order_by(Event.created_at.desc())
    )
    return session.scalars(stmt).all()


def list_federation_events(session: Session) -> Sequence[Event]:
    """Events published to peers: public only, newest first."""
    stmt = (
        select(Event)
        .where(Event.visibility == "public")
        .order_by(Event.created_at.desc())
    )
    return session.scalars(stmt).all()


def count_public_events(session: Session) -> int:
    stmt = select(func.count()).select_from(Event).where(Event.visibility == "public")
    return session.scalar(stmt) or 0


def delete_event(session: Session, *, event: Event, user_id: str) -> None:
    if event.user_id != user_id:
        raise PermissionDeniedError("You do not have permission to delete this event")
    session.delete(event)
    session.flush()


def add_rsvp(
    session: Session,
    *,
    event: Event,
    name: str,
    user_id: str,
    guests: int = 0,
) -> list[RSVP]:
    """Add an attendee plus any guests, enforcing capacity and unique names."""
    name = (name or "").strip()
    if not name:
        raise ValueError("Name is required")
    guests = min(max(guests or 0, 0), MAX_GUESTS)

    current = list(event.rsvps)
    if event.type == "limited" and event.attendee_limit:
        if len(current) + 1 + guests > event.attendee_limit:
            remaining = max(event.attendee_limit - len(current), 0)
            raise EventFullError(
                f"Event capacity exceeded. You're trying to add {guests + 1} attendees "
                f"(including yourself), but only {remaining} spots remain."
            )
    if any(existing.name.lower() == name.lower() for existing in current):
        raise DuplicateRSVPError("Name already exists for this event")

    now = utcnow()
    created = [RSVP(event=event, name=name, user_id=user_id, created_at=now)]
    for index in range(1, guests + 1):
        created.append(
            RSVP(
                event=event,
                name=f"{name}'s Guest #{index}",
                user_id=user_id,
                created_at=now,
            )
        )
    session.add_all(created)
    session.flush()
    return created


def remove_rsvp(session: Session, *, event: Event, rsvp_id: str, user_id: str) -> None:
    rsvp = session.get(RSVP, rsvp_id)
    if rsvp is None or rsvp.event_id != event.id:
        raise LookupError("RSVP not found")
    if user_id not in {rsvp.user_id, event.user_id}:
        raise PermissionDeniedError("You can only remove your own RSVPs")
    event.rsvps.remove(rsvp)
    session.flush()


def create_invite_token(session: Session, *, event: Event) -> InviteToken:
    if event.visibility != "invite-only":
        raise ValueError("Only invite-only events use invite links")
    invite = InviteToken(
        event=event,
        token=generate_invite_token(),
        expires_at=calculate_token_expiration(event.date, event.time),
    )
    session.add(invite)
    session.flush()
    return invite


def get_invite_token(session: Session, *, event_id: str, token: str) -> InviteToken | None:
    stmt = select(InviteToken).where(
        InviteToken.event_id == event_id, InviteToken.token == token
    )
    return session.scalars(stmt).first()


def purge_expired_invite_tokens(session: Session, *, now: datetime | None = None) -> int:
    """Delete invite tokens whose event has started. Returns the count removed."""
    stmt = delete(InviteToken).where(InviteToken.expires_at <= (now or utcnow()))
    result = session.execute(stmt)
    return result.rowcount or 0
