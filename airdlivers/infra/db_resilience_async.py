# airdlivers/infra/db_resilience_async.py
"""
Async database resilience utilities.
Retry logic for transient asyncpg failures.
"""
from __future__ import annotations
import asyncio
from typing import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg
from airdlivers.infra.db_async import get_pool
from airdlivers.infra.logging_config import get_logger

logger = get_logger(__name__)


def is_transient_error(exc: Exception) -> bool:
    """
    Check if database error is transient (should retry).

    Transient errors: connection failures, server-side disconnects,
    too many connections, deadlocks and timeouts.
    """
    if isinstance(exc, (
        asyncpg.PostgresConnectionError,
        asyncpg.TooManyConnectionsError,
        asyncpg.DeadlockDetectedError,
        asyncio.TimeoutError,
        ConnectionError,
    )):
        return True

    if isinstance(exc, asyncpg.PostgresError):
        # Constraint violations and syntax errors are never retried
        return False

    error_message = str(exc).lower()
    transient_patterns = [
        "connection reset",
        "server closed",
        "too many connections",
        "connection refused",
    ]
    return any(pattern in error_message for pattern in transient_patterns)


async def _acquire_with_retry(
    pool: asyncpg.Pool,
    max_retries: int,
    initial_delay: float,
    max_delay: float,
) -> asyncpg.Connection:
    delay = initial_delay
    for attempt in range(max_retries + 1):
        try:
            return await pool.acquire(timeout=5.0)
        except Exception as exc:
            if not is_transient_error(exc):
                raise

            if attempt >= max_retries:
                logger.error(f"Max retries ({max_retries}) exceeded getting connection")
                raise

            logger.warning(
                f"Transient error getting connection (attempt {attempt + 1}/{max_retries}): {exc}. "
                f"Retrying in {delay:.2f}s..."
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2.0, max_delay)

    raise RuntimeError("unreachable")


@asynccontextmanager
async def safe_db_conn(
    autocommit: bool = True,
    max_retries: int = 3,
    initial_delay: float = 0.1,
    max_delay: float = 2.0,
) -> AsyncIterator[asyncpg.Connection]:
    """
    Database connection with retry on transient acquisition errors.

    Only acquiring the connection is retried; statements inside the block
    are not replayed, so a failed conditional write is never applied twice.

    Usage:
        async with safe_db_conn(autocommit=False) as conn:
            await conn.execute(...)
            await conn.execute(...)
    """
    pool = await get_pool()
    conn = await _acquire_with_retry(pool, max_retries, initial_delay, max_delay)

    try:
        if autocommit:
            yield conn
        else:
            async with conn.transaction():
                yield conn
    finally:
        await pool.release(conn)
