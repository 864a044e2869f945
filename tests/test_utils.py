from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta

from cactoide.utils import (
    calculate_token_expiration,
    generate_event_id,
    generate_invite_token,
    generate_user_id,
    is_token_valid,
    isoformat,
)


def test_generate_event_id_is_short_lowercase_alphanumeric():
    ids = {generate_event_id() for _ in range(50)}
    assert all(re.fullmatch(r"[a-z0-9]{8}", value) for value in ids)
    assert len(ids) > 1


def test_generate_user_id_embeds_timestamp():
    assert re.fullmatch(r"user_\d{13}_[a-z0-9]{9}", generate_user_id())


def test_generate_invite_token_is_hex():
    token = generate_invite_token()
    assert re.fullmatch(r"[0-9a-f]{32}", token)


def test_invite_token_validity_ends_at_event_start():
    expires = calculate_token_expiration(date(2030, 5, 4), time(20, 30))
    assert expires == datetime(2030, 5, 4, 20, 30)
    assert is_token_valid(expires, now=expires - timedelta(seconds=1))
    assert not is_token_valid(expires, now=expires)
    assert not is_token_valid(expires, now=expires + timedelta(days=1))


def test_isoformat_handles_missing_values():
    assert isoformat(None) == ""
    assert isoformat(time(9, 5)) == "09:05:00"
