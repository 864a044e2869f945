"""Instance dashboard: name, event count and health of every federated peer."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import httpx

from .config import PeerInstance
from .federation import (
    HEALTH_PATH,
    INFO_PATH,
    configured_peers,
    fetch_health_status,
    fetch_instance_info,
    peer_client,
    settle,
)
from .schemas import HealthReport, HealthStatus, InstanceStatus

logger = logging.getLogger("uvicorn.error")


def classify_health(health: HealthReport | None) -> HealthStatus:
    """Map a peer's health report to ``healthy``, ``unhealthy`` or ``unknown``.

    No report at all (the peer never answered) is ``unknown``; an answer that
    is not ``ok`` is ``unhealthy``.
    """
    if health is None:
        return "unknown"
    if health.ok:
        return "healthy"
    return "unhealthy"


def _unknown_row(peer: PeerInstance) -> InstanceStatus:
    return InstanceStatus(url=peer.url, health_status="unknown")


async def fetch_instance_status(
    client: httpx.AsyncClient, peer: PeerInstance
) -> InstanceStatus:
    info, health = await asyncio.gather(
        settle(fetch_instance_info(client, peer), None, peer=peer, resource=INFO_PATH),
        settle(fetch_health_status(client, peer), None, peer=peer, resource=HEALTH_PATH),
    )
    return InstanceStatus(
        url=peer.url,
        name=info.name if info else None,
        events=info.public_events_count if info else None,
        health_status=classify_health(health),
        response_time=health.response_time if health else None,
        error=health.error if health else None,
    )


async def load_instance_dashboard(
    instances: Sequence[PeerInstance] | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> list[InstanceStatus]:
    """Build one status row per configured peer, in configured order.

    Every peer gets a row even when it is unreachable.
    """
    peers = configured_peers(instances)
    if not peers:
        return []

    try:
        async with peer_client(client) as http:
            rows = await asyncio.gather(
                *(
                    settle(
                        fetch_instance_status(http, peer),
                        _unknown_row(peer),
                        peer=peer,
                        resource="status",
                    )
                    for peer in peers
                )
            )
    except Exception:
        logger.exception("Error loading instance data")
        return [_unknown_row(peer) for peer in peers]

    logger.info(
        "Loaded instance dashboard (%d healthy of %d)",
        sum(1 for row in rows if row.health_status == "healthy"),
        len(rows),
    )
    return list(rows)
