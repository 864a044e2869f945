from __future__ import annotations

from datetime import date, datetime, time, timedelta

import pytest

from cactoide import crud
from cactoide.models import RSVP, Event, InviteToken
from cactoide.utils import utcnow


def _make_event(session, **overrides) -> Event:
    values = {
        "name": "Community Garden Day",
        "date": date(2030, 6, 1),
        "time": time(10, 0),
        "location": "Elm Street Garden",
        "location_type": "text",
        "user_id": "user_owner",
    }
    values.update(overrides)
    event = crud.create_event(session, **values)
    session.commit()
    return event


def test_create_event_assigns_short_id_and_defaults(session):
    event = _make_event(session)
    assert len(event.id) == 8
    assert event.visibility == "public"
    assert event.type == "unlimited"
    assert event.attendee_limit is None


def test_create_event_requires_positive_limit_for_limited(session):
    with pytest.raises(ValueError):
        crud.create_event(
            session,
            name="Tiny",
            date=date(2030, 1, 1),
            time=time(9, 0),
            location="",
            user_id="u",
            type="limited",
            attendee_limit=0,
        )


def test_create_event_drops_limit_for_unlimited(session):
    event = _make_event(session, type="unlimited", attendee_limit=40)
    assert event.attendee_limit is None


def test_create_event_rejects_unknown_visibility(session):
    with pytest.raises(ValueError):
        _make_event(session, visibility="secret")


def test_federation_listing_only_includes_public_newest_first(session):
    older = _make_event(session, name="Older")
    newer = _make_event(session, name="Newer")
    _make_event(session, name="Hidden", visibility="private")
    _make_event(session, name="Invite", visibility="invite-only")
    older.created_at = utcnow() - timedelta(days=2)
    newer.created_at = utcnow()
    session.commit()

    listed = crud.list_federation_events(session)
    assert [e.name for e in listed] == ["Newer", "Older"]
    assert crud.count_public_events(session) == 2
    discover = {e.name for e in crud.list_discover_events(session)}
    assert discover == {"Newer", "Older", "Invite"}


def test_add_rsvp_creates_guest_entries(session):
    event = _make_event(session)
    created = crud.add_rsvp(session, event=event, name="  Robin ", user_id="u1", guests=2)
    session.commit()

    assert [r.name for r in created] == ["Robin", "Robin's Guest #1", "Robin's Guest #2"]
    assert {r.user_id for r in created} == {"u1"}
    assert event.attendee_count == 3


def test_add_rsvp_rejects_duplicate_names_case_insensitively(session):
    event = _make_event(session)
    crud.add_rsvp(session, event=event, name="Sam", user_id="u1")
    with pytest.raises(crud.DuplicateRSVPError):
        crud.add_rsvp(session, event=event, name="sAM", user_id="u2")


def test_add_rsvp_enforces_capacity_including_guests(session):
    event = _make_event(session, type="limited", attendee_limit=3)
    crud.add_rsvp(session, event=event, name="Ari", user_id="u1", guests=1)
    with pytest.raises(crud.EventFullError, match="only 1 spots remain"):
        crud.add_rsvp(session, event=event, name="Bo", user_id="u2", guests=1)
    crud.add_rsvp(session, event=event, name="Bo", user_id="u2")
    assert event.spots_left == 0


def test_remove_rsvp_only_by_attendee_or_owner(session):
    event = _make_event(session)
    (rsvp,) = crud.add_rsvp(session, event=event, name="Kai", user_id="u1")
    session.commit()

    with pytest.raises(crud.PermissionDeniedError):
        crud.remove_rsvp(session, event=event, rsvp_id=rsvp.id, user_id="stranger")
    with pytest.raises(LookupError):
        crud.remove_rsvp(session, event=event, rsvp_id="missing", user_id="u1")

    crud.remove_rsvp(session, event=event, rsvp_id=rsvp.id, user_id="user_owner")
    session.commit()
    assert session.get(RSVP, rsvp.id) is None


def test_delete_event_requires_owner_and_cascades(session):
    event = _make_event(session, visibility="invite-only")
    crud.add_rsvp(session, event=event, name="Lee", user_id="u1")
    crud.create_invite_token(session, event=event)
    session.commit()

    with pytest.raises(crud.PermissionDeniedError):
        crud.delete_event(session, event=event, user_id="u1")

    crud.delete_event(session, event=event, user_id="user_owner")
    session.commit()
    assert session.query(Event).count() == 0
    assert session.query(RSVP).count() == 0
    assert session.query(InviteToken).count() == 0


def test_invite_token_expires_at_event_start(session):
    event = _make_event(session, visibility="invite-only")
    invite = crud.create_invite_token(session, event=event)
    session.commit()

    assert len(invite.token) == 32
    assert invite.expires_at == datetime(2030, 6, 1, 10, 0)
    found = crud.get_invite_token(session, event_id=event.id, token=invite.token)
    assert found is not None and found.id == invite.id


def test_invite_tokens_only_for_invite_only_events(session):
    event = _make_event(session)
    with pytest.raises(ValueError):
        crud.create_invite_token(session, event=event)


def test_purge_expired_invite_tokens(session):
    past = utcnow() - timedelta(days=1)
    stale = _make_event(session, visibility="invite-only", date=past.date(), time=past.time())
    fresh = _make_event(session, visibility="invite-only")
    crud.create_invite_token(session, event=stale)
    keep = crud.create_invite_token(session, event=fresh)
    session.commit()

    assert crud.purge_expired_invite_tokens(session) == 1
    session.commit()
    assert [t.id for t in session.query(InviteToken).all()] == [keep.id]
