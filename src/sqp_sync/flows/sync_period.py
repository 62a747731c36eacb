#!/usr/bin/env python3
"""
Sync Period Flow
================
Manual sync of one window from BigQuery into sqp.<period>_summary.

Usage:
    python -m sqp_sync.flows.sync_period
    python -m sqp_sync.flows.sync_period --start-date 2025-01-06 --end-date 2025-01-19
    python -m sqp_sync.flows.sync_period --strategy top --count 5 --dry-run
"""

import argparse
from datetime import date
from typing import Optional

from prefect import flow, get_run_logger, task
from prefect.cache_policies import NO_CACHE

from sqp_sync.config import get_settings
from sqp_sync.db import OperationalStore
from sqp_sync.errors import SyncError
from sqp_sync.filters import AsinFilter, parse_filter
from sqp_sync.sync.service import SyncService
from sqp_sync.transform import last_completed_window, parse_date
from sqp_sync.warehouse.pool import create_pool


@task(name="sync-sqp-window", cache_policy=NO_CACHE)
def sync_window(
    service: SyncService,
    period_type: str,
    start: date,
    end: date,
    asin_filter: AsinFilter,
    dry_run: bool,
    validate_data: bool,
    inspect: bool,
) -> dict:
    result = service.sync_period_data(
        period_type,
        start,
        end,
        asin_filter=asin_filter,
        dry_run=dry_run,
        validate_data=validate_data,
        inspect=inspect,
    )
    return result.to_dict()


@task(name="refresh-sqp-views", cache_policy=NO_CACHE)
def refresh_views(service: SyncService) -> dict:
    return service.refresh_materialized_views()


@flow(name="sync-period", log_prints=True)
def sync_period_flow(
    period_type: str = "weekly",
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    strategy: str = "all",
    count: int = 10,
    asins: Optional[list[str]] = None,
    dry_run: bool = False,
    validate: bool = False,
    inspect: bool = False,
) -> dict:
    """
    Sync one window.

    Args:
        period_type: weekly | monthly | quarterly | yearly
        start_date: YYYY-MM-DD, defaults to the start of the last completed period
        end_date: YYYY-MM-DD, defaults to the end of the last completed period
        strategy: all | top | representative | specific
        count: ASIN count for top/representative
        asins: ASINs for the specific strategy
        dry_run: Transform and count without writing
        validate: Attach a row-level validation report
        inspect: Attach distribution statistics

    Returns:
        SyncResult as a dict

    Raises:
        SyncError: the sync failed (warehouse error)
    """
    logger = get_run_logger()
    settings = get_settings()

    default = last_completed_window(date.today(), period_type, settings.week_starts_on)
    start = parse_date(start_date) or default.start
    end = parse_date(end_date) or default.end
    asin_filter = parse_filter(strategy, count, asins)

    logger.info("=" * 60)
    logger.info("SQP SYNC PERIOD")
    logger.info("=" * 60)
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Source: {settings.source_table}")
    logger.info(f"Window: {start} to {end} ({period_type})")
    logger.info("=" * 60)

    pool = create_pool(settings)
    try:
        service = SyncService(pool, OperationalStore.from_settings(settings), settings)
        result = sync_window(service, period_type, start, end, asin_filter, dry_run, validate, inspect)

        if result["success"] and not dry_run and result["records_synced"]:
            result["views_refreshed"] = refresh_views(service)
    finally:
        pool.drain(timeout=30)

    logger.info("\n" + "=" * 60)
    logger.info("SYNC COMPLETE" if result["success"] else "SYNC FAILED")
    logger.info("=" * 60)
    logger.info(f"📥 Source rows: {result['source_records']:,}")
    logger.info(f"💾 Synced: {result['records_synced']:,}")
    logger.info(f"❌ Failed rows: {result['records_failed']:,}")

    if not result["success"]:
        raise SyncError(result["error"])

    return result


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Sync one SQP window")
    parser.add_argument("--period-type", default="weekly", choices=["weekly", "monthly", "quarterly", "yearly"])
    parser.add_argument("--start-date", help="YYYY-MM-DD")
    parser.add_argument("--end-date", help="YYYY-MM-DD")
    parser.add_argument("--strategy", default="all", choices=["all", "top", "representative", "specific"])
    parser.add_argument("--count", type=int, default=10)
    parser.add_argument("--asins", nargs="*")
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--validate", action="store_true")
    parser.add_argument("--inspect", action="store_true")
    args = parser.parse_args()

    result = sync_period_flow(
        period_type=args.period_type,
        start_date=args.start_date,
        end_date=args.end_date,
        strategy=args.strategy,
        count=args.count,
        asins=args.asins,
        dry_run=args.dry_run,
        validate=args.validate,
        inspect=args.inspect,
    )

    print("\nSync complete!")
    print(f"Synced: {result['records_synced']:,}")
    print(f"Failed: {result['records_failed']:,}")


if __name__ == "__main__":
    main()
