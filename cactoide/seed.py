"""Development helpers for populating fake events, handy for federation demos."""

from __future__ import annotations

import random
from datetime import timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .crud import DuplicateRSVPError, EventFullError, add_rsvp, create_event
from .database import get_session
from .models import Event
from .storage import init_db
from .utils import generate_user_id, utcnow

_event_types = [
    "Potluck",
    "Hike",
    "Board Game Night",
    "Workshop",
    "Book Club",
    "Picnic",
    "Jam Session",
    "Cleanup Day",
]


def seed_fake_data(
    *,
    event_count: int = 10,
    max_rsvps_per_event: int = 5,
    private_percentage: int = 10,
) -> dict[str, int]:
    """Populate the database with synthetic events and RSVPs."""
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if max_rsvps_per_event < 0:
        raise ValueError("max_rsvps_per_event must be >= 0")
    if not 0 <= private_percentage <= 100:
        raise ValueError("private_percentage must be between 0 and 100")

    init_db()
    fake = Faker()
    stats = {"events": 0, "rsvps": 0}

    with get_session() as session:
        for _ in range(event_count):
            event = _create_event(session, fake, private_percentage=private_percentage)
            stats["events"] += 1
            stats["rsvps"] += _create_rsvps(session, fake, event, max_rsvps_per_event)

    return stats


def _create_event(session: Session, fake: Faker, *, private_percentage: int) -> Event:
    start = utcnow() + timedelta(
        days=random.randint(1, 45), minutes=random.randint(0, 23 * 60)
    )
    if random.randint(1, 100) <= private_percentage:
        visibility = random.choice(["private", "invite-only"])
    else:
        visibility = "public"
    limited = random.random() < 0.4
    use_maps = random.random() < 0.3
    location = fake.address().replace("\n", ", ")
    return create_event(
        session,
        name=f"{fake.city()} {random.choice(_event_types)}"[:100],
        date=start.date(),
        time=start.time().replace(second=0, microsecond=0),
        location=location[:200],
        location_type="maps" if use_maps else "text",
        location_url=f"https://maps.google.com/?q={fake.postcode()}" if use_maps else None,
        type="limited" if limited else "unlimited",
        attendee_limit=random.randint(5, 30) if limited else None,
        visibility=visibility,
        user_id=generate_user_id(),
    )


def _create_rsvps(session: Session, fake: Faker, event: Event, max_rsvps: int) -> int:
    if max_rsvps <= 0:
        return 0
    created = 0
    for _ in range(random.randint(0, max_rsvps)):
        try:
            rsvps = add_rsvp(
                session,
                event=event,
                name=fake.first_name(),
                user_id=generate_user_id(),
                guests=random.choice([0, 0, 0, 1, 2]),
            )
        except (DuplicateRSVPError, EventFullError):
            continue
        created += len(rsvps)
    return created
