#!/usr/bin/env python3
"""
Ingestion Cron Entry Point
==========================

Run the alert ingestion pipeline once and exit.

Usage:
    python scripts/run_ingestion.py
    python scripts/run_ingestion.py --action scrape_source --source fsis-recalls
    python scripts/run_ingestion.py --action test_feeds --json

Exit codes:
    0  run finished with status success
    1  run finished with status error (every source failed)
    2  invalid command (unknown action or source)

Version: 0.1.0
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pydantic import ValidationError

from services.alert_ingestion.commands import IngestionAction, IngestionCommand, Trigger
from services.alert_ingestion.dependencies import build_service
from services.alert_ingestion.errors import UnknownSourceError
from shared.config import LeaseBackend, StorageBackend, settings
from shared.database import PostgresClient, RedisClient
from shared.logging import get_logger, setup_logging

setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="alert-ingestion-cron",
)
logger = get_logger(__name__)


async def main(args: argparse.Namespace) -> int:
    """Build the service, dispatch one command, report."""
    try:
        command = IngestionCommand(
            action=IngestionAction(args.action),
            source=args.source,
            trigger=Trigger.CRON,
        )
    except (ValueError, ValidationError) as e:
        logger.error("invalid_command", error=str(e))
        return 2

    if settings.ingestion.storage == StorageBackend.POSTGRES:
        await PostgresClient.create_tables()

    service = build_service(settings)
    try:
        result = await service.dispatcher.dispatch(command)
    except UnknownSourceError as e:
        logger.error("invalid_command", error=str(e), known=service.registry.names())
        return 2
    finally:
        await service.close()
        await PostgresClient.close()
        if settings.ingestion.lease_backend == LeaseBackend.REDIS:
            await RedisClient.close()

    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        for source_result in result.per_source_results:
            logger.info("source_result", **source_result.model_dump(mode="json"))
        for probe in result.probes or []:
            logger.info("probe_result", **probe)
        logger.info(
            "ingestion_run_summary",
            action=result.action,
            success=result.success,
            total_processed=result.total_processed,
            sync_log_id=result.sync_log_id,
        )

    return 0 if result.success else 1


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run RegWatch alert ingestion once",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--action",
        default=IngestionAction.SCRAPE_ALL.value,
        choices=[a.value for a in IngestionAction],
        help="What to run (default: scrape_all)",
    )
    parser.add_argument(
        "--source",
        default=None,
        help="Source name, required for scrape_source",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run result as JSON",
    )

    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    exit_code = asyncio.run(main(args))
    sys.exit(exit_code)
