#!/usr/bin/env python3
"""
Validate Flow
=============
Runs data quality checks on a synced SQP window.

Emits Prefect events on DQ failures for alerting.

Usage:
    python -m sqp_sync.flows.validate
    python -m sqp_sync.flows.validate --start-date 2025-01-06 --end-date 2025-01-12
"""

import argparse
from datetime import date
from typing import Optional

from prefect import flow, get_run_logger

from sqp_sync.alerts import DQ_FAILURE, PrefectEventSink
from sqp_sync.config import get_settings
from sqp_sync.db import OperationalStore
from sqp_sync.transform import SyncWindow, last_completed_window, parse_date
from sqp_sync.validation.data_quality import validate_data_quality
from sqp_sync.validation.quality import QualityChecker
from sqp_sync.warehouse.pool import create_pool


@flow(name="validate-sqp", log_prints=True)
def validate_flow(
    period_type: str = "weekly",
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> dict:
    """
    Run data quality checks on a synced window.

    Checks:
    - Warehouse vs store row counts and sums
    - Required fields and natural key uniqueness
    - Funnel rules (clicks <= impressions, purchases <= clicks)

    Returns:
        DQ report summary
    """
    logger = get_run_logger()
    settings = get_settings()
    logger.info("🔍 Starting validate-sqp flow")

    default = last_completed_window(date.today(), period_type, settings.week_starts_on)
    window = SyncWindow(
        parse_date(start_date) or default.start, parse_date(end_date) or default.end, period_type
    )

    pool = create_pool(settings)
    try:
        checker = QualityChecker(pool, OperationalStore.from_settings(settings), settings)

        # ==================== PARITY CHECKS ====================
        logger.info("\n⚖️  Warehouse vs store")
        logger.info("-" * 40)
        checks = checker.run_checks(window)

        # ==================== ROW-LEVEL CHECKS ====================
        logger.info("\n✅ Row-level checks")
        logger.info("-" * 40)
        report = validate_data_quality(checker.store_rows(window), settings.outlier_zscore)
    finally:
        pool.drain(timeout=30)

    failed = [c for c in checks if not c.passed]
    summary = {
        "window": window.to_dict(),
        "checks": [{"type": c.type, "status": c.status, "message": c.message} for c in checks],
        "failed": len(failed),
        "quality_score": report.quality_score,
        "validation": report.to_dict(),
    }

    if failed or report.report.failed:
        logger.error(f"❌ DQ FAILED: {len(failed)} parity checks, {report.report.failed} row checks")
        PrefectEventSink("sqp-sync.validate").emit(
            DQ_FAILURE,
            {
                "window": window.to_dict(),
                "failed_checks": [{"type": c.type, "message": c.message} for c in failed],
                "row_checks_failed": report.report.failed,
                "quality_score": report.quality_score,
            },
            severity="warning",
        )
    else:
        logger.info(f"✅ DQ PASSED: score {report.quality_score:.2f}%")

    return summary


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Validate a synced SQP window")
    parser.add_argument("--period-type", default="weekly", choices=["weekly", "monthly", "quarterly", "yearly"])
    parser.add_argument("--start-date", help="YYYY-MM-DD")
    parser.add_argument("--end-date", help="YYYY-MM-DD")
    args = parser.parse_args()

    result = validate_flow(args.period_type, args.start_date, args.end_date)

    print("\nValidation complete!")
    print(f"Failed checks: {result['failed']}")
    print(f"Quality score: {result['quality_score']:.2f}%")


if __name__ == "__main__":
    main()
