# airdlivers/infra/pg_auth_session_repo_async.py
"""
Async PostgreSQL store for moderator login state.
"""
from __future__ import annotations
from typing import Optional

from airdlivers.core.engine.domain import AuthSession
from airdlivers.core.engine.ports import AsyncAuthSessionStore
from airdlivers.infra.db_resilience_async import safe_db_conn
from airdlivers.infra.metrics import AppMetrics
from airdlivers.infra.logging_config import get_logger, mask_id

logger = get_logger(__name__)


class AsyncPostgresAuthSessionStore(AsyncAuthSessionStore):

    async def get(self, actor_id: str) -> Optional[AuthSession]:
        try:
            async with safe_db_conn() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT actor_id, logged_in, awaiting_pin, awaiting_reason_for, logged_in_at, updated_at
                    FROM auth_sessions WHERE actor_id=$1
                    """,
                    actor_id
                )
        except Exception:
            logger.error(f"Failed to get auth session: actor={mask_id(actor_id)}", exc_info=True)
            AppMetrics.database_error("auth_session_get")
            raise

        return AuthSession(**dict(row)) if row else None

    async def upsert(self, session: AuthSession) -> None:
        try:
            async with safe_db_conn() as conn:
                await conn.execute(
                    """
                    INSERT INTO auth_sessions(actor_id, logged_in, awaiting_pin, awaiting_reason_for, logged_in_at)
                    VALUES ($1, $2, $3, $4, $5)
                    ON CONFLICT (actor_id)
                    DO UPDATE SET
                      logged_in = EXCLUDED.logged_in,
                      awaiting_pin = EXCLUDED.awaiting_pin,
                      awaiting_reason_for = EXCLUDED.awaiting_reason_for,
                      logged_in_at = EXCLUDED.logged_in_at,
                      updated_at = now()
                    """,
                    session.actor_id,
                    session.logged_in,
                    session.awaiting_pin,
                    session.awaiting_reason_for,
                    session.logged_in_at,
                )
        except Exception:
            logger.error(f"Failed to upsert auth session: actor={mask_id(session.actor_id)}", exc_info=True)
            AppMetrics.database_error("auth_session_upsert")
            raise

    async def delete(self, actor_id: str) -> None:
        try:
            async with safe_db_conn() as conn:
                await conn.execute("DELETE FROM auth_sessions WHERE actor_id=$1", actor_id)
        except Exception:
            logger.error(f"Failed to delete auth session: actor={mask_id(actor_id)}", exc_info=True)
            AppMetrics.database_error("auth_session_delete")
            raise
