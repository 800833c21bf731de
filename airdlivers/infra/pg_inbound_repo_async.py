# airdlivers/infra/pg_inbound_repo_async.py
"""
Async PostgreSQL inbound event repository (asyncpg).
Handles idempotency tracking for incoming updates.
"""
from __future__ import annotations
from airdlivers.core.engine.ports import AsyncInboundEventRepository
from airdlivers.infra.db_resilience_async import safe_db_conn
from airdlivers.infra.metrics import AppMetrics
from airdlivers.infra.logging_config import get_logger

logger = get_logger(__name__)


class AsyncPostgresInboundEventRepository(AsyncInboundEventRepository):
    """Async PostgreSQL implementation of AsyncInboundEventRepository using asyncpg."""

    async def seen_or_mark(self, provider: str, event_id: str, actor_id: str) -> bool:
        """
        Check if an event was already seen, or mark it as seen.

        Returns:
            True => already seen (idempotency hit)
            False => first time, marked as seen
        """
        try:
            async with safe_db_conn() as conn:
                result = await conn.execute(
                    """
                    INSERT INTO inbound_events(provider, event_id, actor_id)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (provider, event_id) DO NOTHING
                    """,
                    provider,
                    event_id,
                    actor_id,
                )

                # "INSERT 0 1" → inserted, "INSERT 0 0" → conflict (already seen)
                row_count = 0
                if result and result.startswith("INSERT"):
                    row_count = int(result.split()[-1])

                return row_count == 0

        except Exception:
            logger.error(
                f"Failed to check/mark inbound event: provider={provider}, event_id={event_id}",
                exc_info=True
            )
            AppMetrics.database_error("inbound_seen_or_mark")
            raise

    async def cleanup_old(self, ttl_days: int = 30) -> int:
        """
        Delete inbound event records older than ``ttl_days``.

        Returns:
            Number of deleted rows.
        """
        try:
            async with safe_db_conn() as conn:
                result = await conn.execute(
                    """
                    DELETE FROM inbound_events
                    WHERE received_at < now() - ($1 || ' days')::interval
                    """,
                    str(ttl_days),
                )

                deleted = 0
                if result and result.startswith("DELETE"):
                    deleted = int(result.split()[-1])

                if deleted > 0:
                    logger.info(f"Inbound idempotency cleanup: deleted {deleted} rows older than {ttl_days}d")

                return deleted

        except Exception:
            logger.error("Failed to cleanup old inbound events", exc_info=True)
            AppMetrics.database_error("inbound_cleanup_old")
            raise
