"""Database health check with retries and capped exponential backoff."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from starlette.concurrency import run_in_threadpool
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from . import database
from .config import settings

logger = logging.getLogger("uvicorn.error")


class DatabaseUnavailableError(RuntimeError):
    """Raised when the database cannot be reached after every retry."""


@dataclass(frozen=True)
class HealthCheckResult:
    success: bool
    attempts: int
    error: str | None = None
    duration: float | None = None


def backoff_wait(*, base_delay: float, max_delay: float) -> wait_exponential:
    """Wait ``min(base * 2**(k-1), max)`` seconds after failed attempt ``k``."""
    return wait_exponential(multiplier=base_delay, max=max_delay)


async def _default_probe() -> None:
    await run_in_threadpool(database.ping_database)


def _describe(exc: BaseException | None) -> str:
    if exc is None:
        return "Unknown database connection error"
    return str(exc) or exc.__class__.__name__


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "Database connection failed (attempt %d): %s; retrying in %.2fs",
        retry_state.attempt_number,
        _describe(retry_state.outcome.exception()),
        retry_state.next_action.sleep,
    )


async def check_database_health(
    *,
    max_retries: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
    probe: Callable[[], Awaitable[None]] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> HealthCheckResult:
    """Probe the database up to ``max_retries`` times.

    Delays are in seconds and default to the ``db_healthcheck_*`` settings.
    No delay follows the final attempt.
    """
    if max_retries is None:
        max_retries = settings.db_healthcheck_max_retries
    if base_delay is None:
        base_delay = settings.db_healthcheck_base_delay_ms / 1000
    if max_delay is None:
        max_delay = settings.db_healthcheck_max_delay_ms / 1000
    probe = probe or _default_probe

    started = time.perf_counter()
    logger.info("Starting database health check (max_retries=%d)", max_retries)
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries),
        wait=backoff_wait(base_delay=base_delay, max_delay=max_delay),
        retry=retry_if_exception_type(Exception),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=False,
    )

    try:
        async for attempt in retrying:
            with attempt:
                await probe()
            attempts = attempt.retry_state.attempt_number
    except RetryError as exc:
        last = exc.last_attempt
        error = _describe(last.exception())
        logger.error(
            "All database connection attempts failed (attempts=%d): %s",
            last.attempt_number,
            error,
        )
        return HealthCheckResult(
            success=False,
            attempts=last.attempt_number,
            error=error,
            duration=time.perf_counter() - started,
        )

    logger.info("Database connection successful (attempt %d)", attempts)
    return HealthCheckResult(
        success=True,
        attempts=attempts,
        duration=time.perf_counter() - started,
    )


async def ensure_database_connection(**options) -> HealthCheckResult:
    """Run the health check and raise if the database stays unreachable."""
    result = await check_database_health(**options)
    if not result.success:
        raise DatabaseUnavailableError(
            f"Database connection failed after {result.attempts} attempts: {result.error}"
        )
    return result
