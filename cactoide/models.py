"""SQLAlchemy models for Cactoide."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import generate_event_id, utcnow

Base = declarative_base()

EVENT_TYPES = ("limited", "unlimited")
VISIBILITIES = ("public", "private", "invite-only")
LOCATION_TYPES = ("none", "text", "maps")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint(
            "attendee_limit IS NULL OR attendee_limit > 0",
            name="events_attendee_limit_positive",
        ),
    )

    id = Column(String(8), primary_key=True, default=generate_event_id)
    name = Column(String(100), nullable=False)
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    location = Column(String(200), nullable=False, default="")
    location_type = Column(String(8), nullable=False, default="none")
    location_url = Column(String(500), nullable=True)
    type = Column(String(16), nullable=False)
    attendee_limit = Column(Integer, nullable=True)
    user_id = Column(String(100), nullable=False, index=True)
    visibility = Column(String(16), nullable=False, default="public", index=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    rsvps = relationship(
        "RSVP",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="RSVP.created_at",
    )
    invite_tokens = relationship(
        "InviteToken", back_populates="event", cascade="all, delete-orphan"
    )

    @property
    def attendee_count(self) -> int:
        return len(self.rsvps)

    @property
    def spots_left(self) -> int | None:
        if self.type != "limited" or not self.attendee_limit:
            return None
        return max(self.attendee_limit - self.attendee_count, 0)


class RSVP(Base):
    __tablename__ = "rsvps"
    __table_args__ = (
        UniqueConstraint("event_id", "name", name="rsvps_event_id_name_unique"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(8), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(50), nullable=False)
    user_id = Column(String(100), nullable=False, index=True)
    created_at = Column(DateTime, default=_now, nullable=False, index=True)

    event = relationship("Event", back_populates="rsvps")


class InviteToken(Base):
    __tablename__ = "invite_tokens"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(8), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token = Column(String(32), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="invite_tokens")
