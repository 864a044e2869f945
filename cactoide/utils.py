"""Utility helpers for Cactoide."""

from __future__ import annotations

import secrets
import string
import time as _time
from datetime import UTC, date, datetime, time

_ID_ALPHABET = string.ascii_lowercase + string.digits
EVENT_ID_LENGTH = 8
INVITE_TOKEN_LENGTH = 32


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def generate_event_id(length: int = EVENT_ID_LENGTH) -> str:
    """Return a short random identifier used in event URLs."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def generate_user_id() -> str:
    """Return a pseudo-identity such as ``user_1700000000000_k3j9x0a1b``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"user_{int(_time.time() * 1000)}_{suffix}"


def generate_invite_token(length: int = INVITE_TOKEN_LENGTH) -> str:
    """Return a random hex token for invite links."""
    return secrets.token_hex(length // 2)


def calculate_token_expiration(event_date: date, event_time: time) -> datetime:
    """Invite tokens expire when the event starts."""
    return datetime.combine(event_date, event_time)


def is_token_valid(expires_at: datetime, *, now: datetime | None = None) -> bool:
    """Return True while ``expires_at`` lies in the future."""
    now = now or utcnow()
    return now < expires_at


def isoformat(value: datetime | date | time | None) -> str:
    if value is None:
        return ""
    return value.isoformat()
