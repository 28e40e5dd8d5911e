# timesheet_bot/infra/db_resilience_async.py
"""
Retry of Postgres store calls on transient asyncpg errors.
"""
from __future__ import annotations

import asyncio
from functools import wraps
from typing import Callable

import asyncpg

from timesheet_bot.infra.logging_config import get_logger
from timesheet_bot.infra.metrics import AppMetrics

logger = get_logger(__name__)

_TRANSIENT_PATTERNS = (
    "connection",
    "timeout",
    "closed",
    "network",
    "deadlock",
    "too many connections",
)


def is_transient_error(exc: Exception) -> bool:
    """Connection loss, pool exhaustion and deadlocks are worth retrying."""
    if isinstance(exc, (
        asyncpg.PostgresConnectionError,
        asyncpg.TooManyConnectionsError,
        asyncpg.DeadlockDetectedError,
        ConnectionError,
        asyncio.TimeoutError,
    )):
        return True
    if isinstance(exc, asyncpg.PostgresError):
        return False
    message = str(exc).lower()
    return any(p in message for p in _TRANSIENT_PATTERNS)


def retry_on_transient_error(
    max_retries: int = 3,
    initial_delay: float = 0.1,
    backoff_factor: float = 2.0,
    max_delay: float = 5.0,
):
    """
    Retry an async store method with exponential backoff.

        @retry_on_transient_error(max_retries=3)
        async def get_worker(self, worker_id): ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            delay = initial_delay
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    if not is_transient_error(exc) or attempt >= max_retries:
                        AppMetrics.store_error(func.__name__)
                        logger.error(f"Store call {func.__name__} failed: {exc}")
                        raise

                    logger.warning(
                        f"Transient error in {func.__name__} "
                        f"(attempt {attempt + 1}/{max_retries}): {exc}. Retrying in {delay:.2f}s..."
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * backoff_factor, max_delay)

        return wrapper

    return decorator
