# airdlivers/infra/pg_session_store_async.py
from __future__ import annotations
import json
from typing import Optional

from airdlivers.core.engine.domain import FlowKind, SessionState
from airdlivers.core.engine.ports import AsyncSessionStore
from airdlivers.infra.db_resilience_async import safe_db_conn
from airdlivers.infra.metrics import AppMetrics
from airdlivers.infra.logging_config import get_logger, mask_id

logger = get_logger(__name__)


def _get_step_value(step) -> str:
    """Get step value whether it's an enum or string"""
    return step.value if hasattr(step, 'value') else step


class AsyncPostgresSessionStore(AsyncSessionStore):
    """Async implementation of AsyncSessionStore using asyncpg"""

    async def get(self, actor_id: str) -> Optional[SessionState]:
        try:
            async with safe_db_conn() as conn:
                row = await conn.fetchrow(
                    "SELECT flow, step, data::text AS data, updated_at FROM submission_sessions WHERE actor_id=$1",
                    actor_id
                )
                if not row:
                    return None

                return SessionState(
                    actor_id=actor_id,
                    flow=FlowKind(row['flow']),
                    step=row['step'],
                    data=json.loads(row['data']) or {},
                    updated_at=row['updated_at'],
                )
        except Exception:
            logger.error(f"Failed to get session: actor={mask_id(actor_id)}", exc_info=True)
            AppMetrics.database_error("session_get")
            raise

    async def upsert(self, state: SessionState) -> None:
        step_value = _get_step_value(state.step)
        try:
            async with safe_db_conn() as conn:
                await conn.execute(
                    """
                    INSERT INTO submission_sessions(actor_id, flow, step, data)
                    VALUES ($1, $2, $3, $4::jsonb)
                    ON CONFLICT (actor_id)
                    DO UPDATE SET
                      flow = EXCLUDED.flow,
                      step = EXCLUDED.step,
                      data = EXCLUDED.data,
                      updated_at = now()
                    """,
                    state.actor_id, state.flow.value, step_value, json.dumps(state.data)
                )
        except Exception:
            logger.error(f"Failed to upsert session: actor={mask_id(state.actor_id)}", exc_info=True)
            AppMetrics.database_error("session_upsert")
            raise

    async def delete(self, actor_id: str) -> None:
        try:
            async with safe_db_conn() as conn:
                await conn.execute("DELETE FROM submission_sessions WHERE actor_id=$1", actor_id)
        except Exception:
            logger.error(f"Failed to delete session: actor={mask_id(actor_id)}", exc_info=True)
            AppMetrics.database_error("session_delete")
            raise

    async def cleanup_expired(self, ttl_seconds: int) -> int:
        try:
            async with safe_db_conn() as conn:
                result = await conn.execute(
                    "DELETE FROM submission_sessions WHERE updated_at < now() - ($1 || ' seconds')::interval",
                    str(ttl_seconds)
                )
                # asyncpg execute returns "DELETE N" string
                deleted = int(result.split()[-1]) if result else 0
                if deleted > 0:
                    logger.info(f"Cleaned up {deleted} expired sessions (ttl={ttl_seconds}s)")
                return deleted
        except Exception:
            logger.error(f"Failed to cleanup expired sessions: ttl={ttl_seconds}", exc_info=True)
            AppMetrics.database_error("session_cleanup")
            raise
