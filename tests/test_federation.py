from __future__ import annotations

import asyncio
import time
from dataclasses import replace

import httpx
import pytest

from cactoide import federation
from cactoide.config import PeerInstance
from cactoide.schemas import EventRecord

PEER_A = PeerInstance(url="a.example:3000", name="Alpha")
PEER_B = PeerInstance(url="b.example")


def _remote_event(event_id: str, **overrides) -> dict:
    data = {
        "id": event_id,
        "name": f"Event {event_id}",
        "date": "2030-05-01",
        "time": "18:30:00",
        "location": "Riverside Park",
        "location_type": "text",
        "location_url": None,
        "type": "unlimited",
        "federation": True,
        "attendee_limit": None,
        "visibility": "public",
        "user_id": "user_1",
        "created_at": "2030-01-01T10:00:00",
        "updated_at": "2030-01-01T10:00:00",
    }
    data.update(overrides)
    return data


def _mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture()
def short_timeout(monkeypatch):
    monkeypatch.setattr(
        federation, "settings", replace(federation.settings, federation_timeout_ms=100)
    )


@pytest.mark.asyncio
async def test_fetch_all_tags_events_and_skips_timed_out_peer(short_timeout):
    requests: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(str(request.url))
        if request.url.host == "b.example":
            await asyncio.sleep(5)
        events = [_remote_event("aaaa0001"), _remote_event("aaaa0002"), _remote_event("aaaa0003")]
        return httpx.Response(200, json={"events": events, "count": 3})

    started = time.perf_counter()
    async with _mock_client(handler) as client:
        events = await federation.fetch_all_federated_events([PEER_A, PEER_B], client=client)
    elapsed = time.perf_counter() - started

    assert [e.id for e in events] == ["aaaa0001", "aaaa0002", "aaaa0003"]
    assert all(e.federation is True for e in events)
    assert {e.federation_url for e in events} == {"http://a.example:3000"}
    assert sorted(requests) == [
        "http://a.example:3000/api/federation/events",
        "http://b.example/api/federation/events",
    ]
    assert elapsed < 2


@pytest.mark.asyncio
async def test_fetch_all_issues_one_call_per_peer_even_when_all_fail():
    calls: list[str] = []
    peers = [PeerInstance(url=f"peer{i}.example") for i in range(4)]

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.host)
        if request.url.host == "peer0.example":
            raise httpx.ConnectError("connection refused", request=request)
        if request.url.host == "peer1.example":
            return httpx.Response(403, json={"error": "Federation API is not enabled"})
        if request.url.host == "peer2.example":
            return httpx.Response(200, text="<html>not json</html>")
        return httpx.Response(200, json={"count": 0})

    async with _mock_client(handler) as client:
        events = await federation.fetch_all_federated_events(peers, client=client)

    assert events == []
    assert sorted(calls) == sorted(p.url for p in peers)


@pytest.mark.asyncio
async def test_fetch_all_requests_json_from_federation_endpoint():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"events": []})

    async with _mock_client(handler) as client:
        await federation.fetch_all_federated_events([PEER_A], client=client)

    assert seen[0].method == "GET"
    assert seen[0].url.path == "/api/federation/events"
    assert seen[0].headers["accept"] == "application/json"


@pytest.mark.asyncio
async def test_empty_configuration_returns_immediately_without_requests(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    monkeypatch.setattr(
        federation, "settings", replace(federation.settings, federation_instances=())
    )
    async with _mock_client(handler) as client:
        assert await federation.fetch_all_federated_events([], client=client) == []
        assert await federation.fetch_all_federated_events(client=client) == []


@pytest.mark.asyncio
async def test_invalid_remote_records_are_dropped():
    def handler(request: httpx.Request) -> httpx.Response:
        events = [
            _remote_event("good0001"),
            _remote_event("bad00001", visibility="secret"),
            _remote_event("bad00002", attendee_limit=0, type="limited"),
            {"id": "bad00003", "name": "Missing fields"},
            "not an object",
            _remote_event("priv0001", visibility="private"),
            _remote_event("good0002", type="limited", attendee_limit=12),
        ]
        return httpx.Response(200, json={"events": events})

    async with _mock_client(handler) as client:
        events = await federation.fetch_all_federated_events([PEER_B], client=client)

    assert [e.id for e in events] == ["good0001", "good0002"]
    assert events[1].attendee_limit == 12


@pytest.mark.asyncio
async def test_events_field_must_be_a_list():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"events": {"id": "x"}})

    async with _mock_client(handler) as client:
        assert await federation.fetch_events_from_instance(client, PEER_A) == []


@pytest.mark.asyncio
async def test_per_peer_order_is_preserved():
    def handler(request: httpx.Request) -> httpx.Response:
        prefix = "a" if request.url.host == "a.example" else "b"
        events = [_remote_event(f"{prefix}{i:07d}") for i in range(3)]
        return httpx.Response(200, json={"events": events})

    async with _mock_client(handler) as client:
        events = await federation.fetch_all_federated_events([PEER_A, PEER_B], client=client)

    ids = [e.id for e in events]
    assert [i for i in ids if i.startswith("a")] == ["a0000000", "a0000001", "a0000002"]
    assert [i for i in ids if i.startswith("b")] == ["b0000000", "b0000001", "b0000002"]


@pytest.mark.asyncio
async def test_unexpected_error_in_one_peer_does_not_abort_others(monkeypatch):
    original = federation.fetch_events_from_instance

    async def flaky(client, peer):
        if peer is PEER_B:
            raise RuntimeError("boom")
        return await original(client, peer)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"events": [_remote_event("aaaa0001")]})

    monkeypatch.setattr(federation, "fetch_events_from_instance", flaky)
    async with _mock_client(handler) as client:
        events = await federation.fetch_all_federated_events([PEER_A, PEER_B], client=client)

    assert [e.id for e in events] == ["aaaa0001"]


def test_merge_keeps_local_events_untagged():
    local = [
        EventRecord.model_validate(
            _remote_event("local001", federation=None, user_id="user_local")
        )
    ]
    remote = [
        EventRecord.model_validate(
            _remote_event("remote01", federation_url="http://b.example")
        )
    ]
    merged = federation.merge_with_local(local, remote)

    assert [e.id for e in merged] == ["local001", "remote01"]
    assert merged[0].federation is None
    assert merged[0].federation_url is None
