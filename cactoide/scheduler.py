"""APScheduler integration."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from .config import settings
from .crud import purge_expired_invite_tokens
from .database import get_session

logger = logging.getLogger("uvicorn.error")

_scheduler: BackgroundScheduler | None = None


def run_invite_purge() -> int:
    with get_session() as session:
        removed = purge_expired_invite_tokens(session)
    logger.info("Purged %d expired invite tokens", removed)
    return removed


def start_scheduler() -> BackgroundScheduler:
    global _scheduler
    if _scheduler and _scheduler.running:
        return _scheduler
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_invite_purge,
        "interval",
        hours=settings.invite_purge_interval_hours,
        id="invite-purge",
        max_instances=1,
        replace_existing=True,
    )
    scheduler.start()
    _scheduler = scheduler
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        _scheduler = None
