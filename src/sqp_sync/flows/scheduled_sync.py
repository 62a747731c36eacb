#!/usr/bin/env python3
"""
Scheduled Sync Flow
===================
One scheduler invocation as a Prefect flow: next window, retries, quality
checks, view refresh, sync_log bookkeeping.

Usage:
    python -m sqp_sync.flows.scheduled_sync           # run once
    python -m sqp_sync.flows.scheduled_sync --serve   # serve on SYNC_SCHEDULE
"""

import argparse

from prefect import flow, get_run_logger

from sqp_sync.config import get_settings
from sqp_sync.errors import SyncError
from sqp_sync.sync.scheduler import build_scheduler


@flow(name="scheduled-sqp-sync", log_prints=True)
def scheduled_sync_flow(triggered_by: str = "scheduled") -> dict:
    """
    Run the sync job once.

    Returns:
        SyncJobResult as a dict

    Raises:
        SyncError: the job failed after retries
    """
    logger = get_run_logger()
    scheduler = build_scheduler()

    try:
        result = scheduler.execute_sync_job(triggered_by=triggered_by)
    finally:
        scheduler.cleanup(timeout=30)

    if result.already_running:
        logger.warning("⏳ Another sync is running, skipped")
    elif not result.success:
        raise SyncError(result.error or "Sync failed")

    return result.to_dict()


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Scheduled SQP sync")
    parser.add_argument("--serve", action="store_true", help="Serve the flow on the configured cron")
    args = parser.parse_args()

    if args.serve:
        settings = get_settings()
        scheduled_sync_flow.serve(name="scheduled-sqp-sync", cron=settings.sync_schedule)
        return

    result = scheduled_sync_flow()
    print("\nSync job complete!")
    print(f"Records processed: {result['records_processed']:,}")
    print(f"Retries: {result['retry_count']}")


if __name__ == "__main__":
    main()
