"""
Retry helpers for transient database errors.

Pool videos are updated by the batch run and the status checker at the same
time, so short lock waits and dropped connections are expected. Calls wrapped
here retry those with exponential backoff; anything else is re-raised at once.

Recognised transient failures:
- PostgreSQL: deadlock (40P01), serialization failure (40001), lock timeouts,
  refused/reset connections
- SQLite: "database is locked", SQLITE_BUSY / SQLITE_LOCKED
"""

import asyncio
import logging
import random
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY = 0.1  # seconds
DEFAULT_MAX_DELAY = 2.0  # seconds
DEFAULT_EXPONENTIAL_BASE = 2

# Queries slower than this are logged with their SQL
SLOW_QUERY_THRESHOLD = 1.0

_TRANSIENT_MESSAGES = (
    "database is locked",
    "database table is locked",
    "sqlite_busy",
    "sqlite_locked",
    "deadlock detected",
    "could not serialize access",
    "could not obtain lock",
    "lock timeout",
    "canceling statement due to lock timeout",
    "connection refused",
    "connection reset",
    "server closed the connection unexpectedly",
)

_TRANSIENT_SQLSTATES = ("40P01", "40001")


class DatabaseRetryableError(Exception):
    """Raised when a transient database error persists through every retry."""

    pass


def is_retryable_database_error(exc: BaseException) -> bool:
    """Return True if ``exc`` (or its cause chain) looks like a transient DB error."""
    message = str(exc).lower()
    if any(pattern in message for pattern in _TRANSIENT_MESSAGES):
        return True

    if getattr(exc, "sqlstate", None) in _TRANSIENT_SQLSTATES:
        return True

    # databases wraps driver exceptions
    if exc.__cause__ is not None:
        return is_retryable_database_error(exc.__cause__)

    return False


def _backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(base_delay * (DEFAULT_EXPONENTIAL_BASE**attempt), max_delay)
    # +/-25% jitter so concurrent writers don't retry in lockstep
    delay += delay * 0.25 * (2 * random.random() - 1)
    return max(0.01, delay)


async def execute_with_retry(
    func: Callable,
    *args,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    **kwargs,
) -> Any:
    """
    Await ``func(*args, **kwargs)``, retrying transient database errors.

    Raises:
        DatabaseRetryableError: the error was transient but never cleared
        Other exceptions: propagated unchanged on the first occurrence
    """
    last_exception: Optional[Exception] = None

    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not is_retryable_database_error(e):
                raise
            last_exception = e

            if attempt < max_retries:
                delay = _backoff_delay(attempt, base_delay, max_delay)
                logger.warning(
                    f"Database error (attempt {attempt + 1}/{max_retries + 1}), retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)
            else:
                logger.error(f"Database error after {max_retries + 1} attempts, giving up: {e}")

    raise DatabaseRetryableError(
        f"Database operation failed after {max_retries + 1} attempts: {last_exception}"
    )


async def _timed(operation: str, query, call):
    started = time.monotonic()
    result = await call()
    elapsed = time.monotonic() - started
    if elapsed >= SLOW_QUERY_THRESHOLD:
        logger.warning(f"Slow {operation} ({elapsed:.2f}s): {str(query)[:500]}")
    return result


async def fetch_one_with_retry(db, query, max_retries: int = DEFAULT_MAX_RETRIES):
    """fetch_one on ``db`` with transient-error retry and slow query logging."""
    return await execute_with_retry(
        _timed, "fetch_one", query, lambda: db.fetch_one(query), max_retries=max_retries
    )


async def fetch_all_with_retry(db, query, max_retries: int = DEFAULT_MAX_RETRIES):
    """fetch_all on ``db`` with transient-error retry and slow query logging."""
    return await execute_with_retry(
        _timed, "fetch_all", query, lambda: db.fetch_all(query), max_retries=max_retries
    )


async def db_execute_with_retry(db, query, max_retries: int = DEFAULT_MAX_RETRIES):
    """execute on ``db`` with transient-error retry and slow query logging."""
    return await execute_with_retry(
        _timed, "execute", query, lambda: db.execute(query), max_retries=max_retries
    )
