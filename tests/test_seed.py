from __future__ import annotations

import pytest

from cactoide import crud
from cactoide.models import RSVP, Event
from cactoide.seed import seed_fake_data


def test_seed_fake_data_creates_public_events(session):
    stats = seed_fake_data(event_count=4, max_rsvps_per_event=3, private_percentage=0)

    assert stats["events"] == 4
    assert session.query(Event).count() == 4
    assert session.query(RSVP).count() == stats["rsvps"]
    assert crud.count_public_events(session) == 4


def test_seed_fake_data_rejects_bad_percentage():
    with pytest.raises(ValueError):
        seed_fake_data(private_percentage=101)
