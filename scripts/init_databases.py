#!/usr/bin/env python3
"""
Database Initialization Script
==============================

Create the RegWatch ingestion tables and verify backing services.

Usage:
    python scripts/init_databases.py
    python scripts/init_databases.py --postgres-only
    python scripts/init_databases.py --redis-only

Version: 0.1.0
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.logging import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False, service_name="init-db")
logger = get_logger(__name__)


async def init_postgres() -> bool:
    """Create the alerts, freshness and sync log tables."""
    from sqlalchemy import text

    from shared.database.postgres import PostgresClient

    logger.info("postgres_init_started")

    try:
        async with PostgresClient.get_engine().begin() as conn:
            result = await conn.execute(text("SELECT version()"))
            version = result.scalar() or ""
            logger.info("postgres_version", version=version[:50])

        await PostgresClient.create_tables()
        return True

    except Exception as e:
        logger.error("postgres_init_failed", error=str(e))
        return False

    finally:
        await PostgresClient.close()


async def init_redis() -> bool:
    """Verify Redis, used for cross-process source leases."""
    from shared.database.redis import RedisClient

    logger.info("redis_init_started")

    try:
        health = await RedisClient.health_check()
        if health.get("status") == "healthy":
            logger.info("redis_ready", version=health.get("redis_version"))
            return True

        logger.error("redis_health_check_failed", error=health.get("error"))
        return False

    finally:
        await RedisClient.close()


async def main(args: argparse.Namespace) -> int:
    """Main initialization function."""
    results: dict[str, bool] = {}

    if args.all or args.postgres_only:
        results["PostgreSQL"] = await init_postgres()

    if args.all or args.redis_only:
        results["Redis"] = await init_redis()

    failed = [name for name, ok in results.items() if not ok]
    for name, ok in results.items():
        logger.info("init_result", component=name, ok=ok)

    if failed:
        logger.error("init_failed", components=failed)
        return 1

    logger.info("init_completed")
    return 0


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Initialize RegWatch databases",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--postgres-only",
        action="store_true",
        help="Initialize only PostgreSQL",
    )
    parser.add_argument(
        "--redis-only",
        action="store_true",
        help="Check only Redis",
    )

    args = parser.parse_args()

    # If no specific database is selected, init all
    args.all = not (args.postgres_only or args.redis_only)

    return args


if __name__ == "__main__":
    args = parse_args()
    exit_code = asyncio.run(main(args))
    sys.exit(exit_code)
