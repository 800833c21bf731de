#!/usr/bin/env python3
# airdlivers/infra/migrate.py
"""
Standalone migration runner.

    python -m airdlivers.infra.migrate

Run it before starting the application (CI/CD step, init container or by
hand). The application validates the schema version at startup but never
runs migrations itself.
"""
import asyncio
import sys

from airdlivers.config import settings
from airdlivers.infra.db_async import close_pool, init_pool
from airdlivers.infra.logging_config import get_logger, setup_logging
from airdlivers.infra.migrations_async import apply_migrations

setup_logging(level="INFO", use_json=False)
logger = get_logger(__name__)


async def main() -> int:
    logger.info("=" * 60)
    logger.info("Database Migration Runner")
    logger.info("=" * 60)
    logger.info(f"Environment: {settings.app_env}")
    logger.info(f"Database: {settings.pghost}:{settings.pgport}/{settings.pgdatabase}")

    try:
        await init_pool()
        logger.info("✓ Database connected")

        result = await apply_migrations()

        logger.info("=" * 60)
        logger.info(f"Status: {'SUCCESS' if result['ok'] else 'FAILED'}")
        logger.info(f"Migrations applied: {result['count']}")
        for migration in result['applied']:
            logger.info(f"  ✓ {migration}")
        if not result['applied']:
            logger.info("No new migrations to apply")
        logger.info("=" * 60)

        return 0 if result['ok'] else 1

    except Exception as exc:
        logger.critical("MIGRATION FAILED")
        logger.critical(f"Error: {exc}", exc_info=True)
        return 1

    finally:
        await close_pool()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
