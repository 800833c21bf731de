# airdlivers/infra/schema_validator.py
"""
Schema version check at startup.

The application does NOT run migrations itself (see
``airdlivers.infra.migrate``). It refuses to start if the newest applied
migration differs from ``settings.expected_schema_version``.
"""
from __future__ import annotations
from airdlivers.config import settings
from airdlivers.infra.db_async import db_conn
from airdlivers.infra.logging_config import get_logger

logger = get_logger(__name__)

_RUN_MIGRATIONS_HINT = "Run migrations first: python -m airdlivers.infra.migrate"


async def validate_schema_version() -> dict:
    """
    Returns:
        dict with ``ok``, ``current_version`` and ``expected_version``.

    Raises:
        RuntimeError: schema missing or at a different version.
    """
    async with db_conn() as conn:
        table_exists = await conn.fetchval(
            """
            SELECT EXISTS (
                SELECT FROM information_schema.tables
                WHERE table_schema = 'public'
                AND table_name = 'schema_migrations'
            )
            """
        )
        if not table_exists:
            error = f"Schema migrations table not found. {_RUN_MIGRATIONS_HINT}"
            logger.critical(error)
            raise RuntimeError(error)

        # Filenames sort in apply order; applied_at ties within one run
        current_version = await conn.fetchval(
            "SELECT version FROM schema_migrations ORDER BY version DESC LIMIT 1"
        )

    if current_version is None:
        error = f"No migrations have been applied. {_RUN_MIGRATIONS_HINT}"
        logger.critical(error)
        raise RuntimeError(error)

    if current_version != settings.expected_schema_version:
        error = (
            f"Schema version mismatch! Expected: {settings.expected_schema_version}, "
            f"Found: {current_version}. {_RUN_MIGRATIONS_HINT}"
        )
        logger.critical(error)
        raise RuntimeError(error)

    logger.info(f"Schema version validated: {current_version}")
    return {
        "ok": True,
        "current_version": current_version,
        "expected_version": settings.expected_schema_version,
    }
