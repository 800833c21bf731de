# airdlivers/infra/pg_user_control_repo_async.py
"""
Async PostgreSQL store for per-user suspension / termination flags.
"""
from __future__ import annotations
from typing import Optional

from airdlivers.core.engine.domain import UserControl
from airdlivers.core.engine.ports import AsyncUserControlStore
from airdlivers.infra.db_resilience_async import safe_db_conn
from airdlivers.infra.metrics import AppMetrics
from airdlivers.infra.logging_config import get_logger, mask_id

logger = get_logger(__name__)


class AsyncPostgresUserControlStore(AsyncUserControlStore):

    async def get(self, user_id: str) -> Optional[UserControl]:
        try:
            async with safe_db_conn() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT user_id, suspended, suspended_reason, terminated, terminated_reason, updated_at
                    FROM user_controls WHERE user_id=$1
                    """,
                    user_id
                )
        except Exception:
            logger.error(f"Failed to get user control: user={mask_id(user_id)}", exc_info=True)
            AppMetrics.database_error("user_control_get")
            raise

        return UserControl(**dict(row)) if row else None

    async def upsert(self, control: UserControl) -> None:
        try:
            async with safe_db_conn() as conn:
                await conn.execute(
                    """
                    INSERT INTO user_controls(user_id, suspended, suspended_reason, terminated, terminated_reason)
                    VALUES ($1, $2, $3, $4, $5)
                    ON CONFLICT (user_id)
                    DO UPDATE SET
                      suspended = EXCLUDED.suspended,
                      suspended_reason = EXCLUDED.suspended_reason,
                      terminated = EXCLUDED.terminated,
                      terminated_reason = EXCLUDED.terminated_reason,
                      updated_at = now()
                    """,
                    control.user_id,
                    control.suspended,
                    control.suspended_reason,
                    control.terminated,
                    control.terminated_reason,
                )
        except Exception:
            logger.error(f"Failed to upsert user control: user={mask_id(control.user_id)}", exc_info=True)
            AppMetrics.database_error("user_control_upsert")
            raise
