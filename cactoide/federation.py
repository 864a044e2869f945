"""Federation client: fetch public events and metadata from peer instances.

Every call in this module degrades instead of raising. A peer that is down,
slow, answers with an error status or sends a body of the wrong shape simply
contributes nothing, so one bad peer never breaks the discovery page.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable, Sequence
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, TypeVar

import httpx
from pydantic import ValidationError

from .config import PeerInstance, settings
from .schemas import EventRecord, FederatedEventsResponse, HealthReport, InstanceInfo

# Use uvicorn's error logger so messages get the level prefix in the default log
# format, like the rest of the app.
logger = logging.getLogger("uvicorn.error")

EVENTS_PATH = "/api/federation/events"
INFO_PATH = "/api/federation/info"
HEALTH_PATH = "/api/healthz"

JSON_HEADERS = {"Accept": "application/json"}

T = TypeVar("T")


@asynccontextmanager
async def peer_client(client: httpx.AsyncClient | None = None) -> AsyncIterator[httpx.AsyncClient]:
    """Yield ``client`` if given, else a short-lived client closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(settings.federation_timeout),
        headers=JSON_HEADERS,
    ) as owned:
        yield owned


async def _get(
    client: httpx.AsyncClient, peer: PeerInstance, path: str
) -> httpx.Response | None:
    """Issue one bounded GET. Returns None on transport failure or timeout."""
    url = f"{peer.base_url}{path}"
    logger.debug("Fetching %s from federated instance", url)
    try:
        async with asyncio.timeout(settings.federation_timeout):
            return await client.get(url, headers=JSON_HEADERS)
    except (httpx.HTTPError, httpx.InvalidURL, TimeoutError) as exc:
        logger.error(
            "Error fetching %s from instance %s: %s",
            path,
            peer.url,
            str(exc) or exc.__class__.__name__,
        )
        return None


def _json_body(response: httpx.Response, peer: PeerInstance, path: str) -> Any:
    try:
        return response.json()
    except ValueError:
        logger.warning("Malformed JSON body for %s from instance %s", path, peer.url)
        return None


def _accept_event(raw: Any, peer: PeerInstance) -> EventRecord | None:
    try:
        event = EventRecord.model_validate(raw)
    except ValidationError as exc:
        logger.warning(
            "Dropping invalid event from instance %s: %s",
            peer.url,
            exc.errors(include_url=False),
        )
        return None
    if event.visibility == "private":
        logger.warning("Dropping private event %s sent by instance %s", event.id, peer.url)
        return None
    return event.model_copy(update={"federation": True, "federation_url": peer.base_url})


async def fetch_events_from_instance(
    client: httpx.AsyncClient, peer: PeerInstance
) -> list[EventRecord]:
    """Return the public events of one peer, tagged with their provenance."""
    response = await _get(client, peer, EVENTS_PATH)
    if response is None:
        return []
    if not response.is_success:
        logger.warning(
            "Failed to fetch events from instance %s (status %s)",
            peer.url,
            response.status_code,
        )
        return []

    body = _json_body(response, peer, EVENTS_PATH)
    try:
        payload = FederatedEventsResponse.model_validate(body)
    except ValidationError:
        logger.warning("Invalid events response structure from instance %s", peer.url)
        return []

    events = [
        event
        for event in (_accept_event(raw, peer) for raw in payload.events)
        if event is not None
    ]
    logger.info(
        "Fetched %d federated events from instance %s", len(events), peer.url
    )
    return events


async def fetch_instance_info(
    client: httpx.AsyncClient, peer: PeerInstance
) -> InstanceInfo | None:
    response = await _get(client, peer, INFO_PATH)
    if response is None:
        return None
    if not response.is_success:
        logger.warning(
            "Failed to fetch instance info from %s (status %s)",
            peer.url,
            response.status_code,
        )
        return None
    try:
        return InstanceInfo.model_validate(_json_body(response, peer, INFO_PATH))
    except ValidationError:
        logger.warning("Invalid info response structure from instance %s", peer.url)
        return None


async def fetch_health_status(
    client: httpx.AsyncClient, peer: PeerInstance
) -> HealthReport | None:
    """Return the peer's health report.

    ``None`` means the peer could not be asked at all (transport failure,
    timeout or an unreadable body). A non-2xx reply yields a report with
    ``ok=False``, keeping the peer's own error details when it sent JSON.
    """
    response = await _get(client, peer, HEALTH_PATH)
    if response is None:
        return None

    if not response.is_success:
        logger.warning(
            "Failed to fetch health status from %s (status %s)",
            peer.url,
            response.status_code,
        )
        status_error = f"HTTP {response.status_code}"
        try:
            report = HealthReport.model_validate(response.json())
        except (ValueError, ValidationError):
            return HealthReport(ok=False, error=status_error)
        error = f"{status_error}: {report.error}" if report.error else status_error
        return report.model_copy(update={"ok": False, "error": error})

    try:
        return HealthReport.model_validate(_json_body(response, peer, HEALTH_PATH))
    except ValidationError:
        logger.warning("Invalid health response structure from instance %s", peer.url)
        return None


async def settle(
    awaitable: Awaitable[T], fallback: T, *, peer: PeerInstance, resource: str
) -> T:
    """Await one per-peer call, converting any unexpected error to ``fallback``."""
    try:
        return await awaitable
    except Exception:
        logger.exception("Unexpected error fetching %s from instance %s", resource, peer.url)
        return fallback


def configured_peers(instances: Sequence[PeerInstance] | None) -> tuple[PeerInstance, ...]:
    if instances is None:
        instances = settings.federation_instances
    return tuple(instances or ())


async def fetch_all_federated_events(
    instances: Sequence[PeerInstance] | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> list[EventRecord]:
    """Fetch events from every configured peer concurrently.

    Always returns a list, possibly empty, and never raises.
    """
    try:
        peers = configured_peers(instances)
        if not peers:
            logger.debug("No federation instances configured")
            return []

        async with peer_client(client) as http:
            results = await asyncio.gather(
                *(
                    settle(
                        fetch_events_from_instance(http, peer),
                        [],
                        peer=peer,
                        resource=EVENTS_PATH,
                    )
                    for peer in peers
                )
            )
    except Exception:
        logger.exception("Error fetching federated events")
        return []

    federated = [event for batch in results for event in batch]
    logger.info(
        "Completed fetching federated events (%d events from %d instances)",
        len(federated),
        len(peers),
    )
    return federated


def merge_with_local(
    local: Iterable[EventRecord], federated: Iterable[EventRecord]
) -> list[EventRecord]:
    """Local events first, then federated ones in the order they arrived."""
    return [*local, *federated]
