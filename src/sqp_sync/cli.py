#!/usr/bin/env python3
"""
SQP Sync CLI
============
Operator commands over the sync engine.

Usage:
    sqp-sync test
    sqp-sync inspect --query "running shoes" --start 2025-01-06 --end 2025-01-12
    sqp-sync sync --start 2025-01-06 --end 2025-01-19 --strategy top --count 5 --dry-run
    sqp-sync compare --query "running shoes" --start 2025-01-06 --end 2025-01-12
    sqp-sync run-once
    sqp-sync schedule
    sqp-sync status

Exit codes: 0 success, 1 failure, 2 bad arguments.
"""

import argparse
import json
import sys
from datetime import date
from pathlib import Path

from sqp_sync.config import Settings, get_settings
from sqp_sync.db import SYNC_LOG_TABLE, OperationalStore
from sqp_sync.errors import SyncError
from sqp_sync.filters import parse_filter
from sqp_sync.inspection import DataInspector, sampling_strategies
from sqp_sync.reports import InspectionReportGenerator
from sqp_sync.sync.scheduler import build_scheduler
from sqp_sync.sync.service import SyncService
from sqp_sync.transform import last_completed_window, parse_date
from sqp_sync.warehouse.client import create_warehouse_client
from sqp_sync.warehouse.pool import ConnectionPool, create_pool

PERIOD_TYPES = ["weekly", "monthly", "quarterly", "yearly"]


def open_services(settings: Settings) -> tuple[ConnectionPool, OperationalStore]:
    """Pool and store for one command."""
    return create_pool(settings), OperationalStore.from_settings(settings)


def resolve_window(args, settings: Settings) -> tuple[date, date]:
    """Explicit --start/--end, defaulting to the last completed period."""
    period_type = getattr(args, "period_type", "weekly")
    default = last_completed_window(date.today(), period_type, settings.week_starts_on)
    start = parse_date(args.start) if args.start else default.start
    end = parse_date(args.end) if args.end else default.end
    if start is None or end is None:
        raise ValueError("Dates must be YYYY-MM-DD")
    if start > end:
        raise ValueError(f"--start {start} is after --end {end}")
    return start, end


def emit(text: str, output: str | None) -> None:
    if output:
        Path(output).write_text(text)
        print(f"📝 Report written to {output}")
    else:
        print(text)


# =============================================================================
# Commands
# =============================================================================


def cmd_test(args, settings: Settings) -> int:
    """Check warehouse and store connectivity."""
    ok = True

    print("🔌 BigQuery...")
    try:
        client = create_warehouse_client(settings, verify=True)
        client.close()
        print(f"   ✅ Connected ({settings.source_table})")
    except SyncError as e:
        print(f"   ❌ {e}")
        ok = False

    print("🔌 Supabase...")
    try:
        store = OperationalStore.from_settings(settings)
        store.select(SYNC_LOG_TABLE, columns="id", limit=1)
        print(f"   ✅ Connected ({settings.environment})")
    except Exception as e:
        print(f"   ❌ {e}")
        ok = False

    return 0 if ok else 1


def cmd_inspect(args, settings: Settings) -> int:
    """ASIN distribution for one search query."""
    start, end = resolve_window(args, settings)
    pool, _ = open_services(settings)
    try:
        distribution = DataInspector(pool, settings).analyze_asin_distribution(args.query, start, end)
    finally:
        pool.drain(timeout=30)

    data = {"inspection": distribution, "strategies": sampling_strategies(distribution)}
    emit(InspectionReportGenerator().generate(data, fmt=args.format), args.output)
    return 0


def cmd_sync(args, settings: Settings) -> int:
    """Sync one window."""
    start, end = resolve_window(args, settings)
    asin_filter = parse_filter(args.strategy, args.count, args.asins)

    pool, store = open_services(settings)
    try:
        service = SyncService(pool, store, settings)
        result = service.sync_period_data(
            args.period_type,
            start,
            end,
            asin_filter=asin_filter,
            dry_run=args.dry_run,
            validate_data=args.validate,
            inspect=args.inspect,
        )
        if result.success and not args.dry_run and result.records_synced:
            service.refresh_materialized_views()
    finally:
        pool.drain(timeout=30)

    data = {"sync": result.to_dict()}
    if result.validation:
        data["validation"] = result.validation
    emit(InspectionReportGenerator().generate(data, fmt=args.format, title="SQP Sync Report"), args.output)

    if not result.success:
        print(f"❌ Sync failed: {result.error}", file=sys.stderr)
        return 1
    return 0


def cmd_compare(args, settings: Settings) -> int:
    """Warehouse vs store for one search query."""
    start, end = resolve_window(args, settings)
    pool, store = open_services(settings)
    try:
        comparison = SyncService(pool, store, settings).compare_period_data(
            args.query, args.period_type, start, end
        )
    finally:
        pool.drain(timeout=30)

    emit(
        InspectionReportGenerator().generate(
            {"comparison": comparison["counts"], "records": comparison["records"]},
            fmt=args.format,
            title=f"SQP Comparison: {comparison['query']}",
        ),
        args.output,
    )
    return 0


def cmd_run_once(args, settings: Settings) -> int:
    """One scheduler invocation, triggered manually."""
    scheduler = build_scheduler(settings)
    try:
        result = scheduler.trigger_manual_sync()
    finally:
        scheduler.cleanup(timeout=30)

    print(json.dumps(result.to_dict(), indent=2, default=str))
    if not result.success:
        print(f"❌ {result.error}", file=sys.stderr)
        return 1
    return 0


def cmd_schedule(args, settings: Settings) -> int:
    """Run the in-process scheduler until interrupted."""
    scheduler = build_scheduler(settings)
    scheduler.start()
    print(f"🕑 Scheduler running on '{settings.sync_schedule}', next run {scheduler.next_run_time().isoformat()}")
    try:
        while scheduler.is_active:
            scheduler.join(60)
    except KeyboardInterrupt:
        print("\n🛑 Stopping...")
    finally:
        scheduler.cleanup(timeout=60)
    return 0


def cmd_status(args, settings: Settings) -> int:
    """Sync status, recent metrics and alerts."""
    scheduler = build_scheduler(settings)
    try:
        status = scheduler.get_sync_status()
        status["metrics"] = scheduler.get_sync_metrics(args.days)
    finally:
        scheduler.cleanup(timeout=30)
    print(json.dumps(status, indent=2, default=str))
    return 0


# =============================================================================
# Parser
# =============================================================================


def _add_window(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--period-type", default="weekly", choices=PERIOD_TYPES)
    parser.add_argument("--start", help="YYYY-MM-DD (default: start of last completed period)")
    parser.add_argument("--end", help="YYYY-MM-DD (default: end of last completed period)")


def _add_report(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--format", default="markdown", choices=["markdown", "html", "json"])
    parser.add_argument("--output", help="Write the report to a file instead of stdout")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sqp-sync", description="BigQuery → Supabase SQP sync")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("test", help="Check warehouse and store connectivity").set_defaults(func=cmd_test)

    p = sub.add_parser("inspect", help="ASIN distribution for a search query")
    p.add_argument("--query", required=True)
    _add_window(p)
    _add_report(p)
    p.set_defaults(func=cmd_inspect)

    p = sub.add_parser("sync", help="Sync one window")
    _add_window(p)
    p.add_argument("--strategy", default="all", choices=["all", "top", "representative", "specific"])
    p.add_argument("--count", type=int, default=10)
    p.add_argument("--asins", nargs="*")
    p.add_argument("--dry-run", action="store_true")
    p.add_argument("--validate", action="store_true")
    p.add_argument("--inspect", action="store_true")
    _add_report(p)
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("compare", help="Compare warehouse and store for a search query")
    p.add_argument("--query", required=True)
    _add_window(p)
    _add_report(p)
    p.set_defaults(func=cmd_compare)

    sub.add_parser("run-once", help="Run the scheduled job once").set_defaults(func=cmd_run_once)
    sub.add_parser("schedule", help="Run the cron scheduler in the foreground").set_defaults(func=cmd_schedule)

    p = sub.add_parser("status", help="Sync status, metrics and alerts")
    p.add_argument("--days", type=int, default=7)
    p.set_defaults(func=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()

    try:
        return args.func(args, settings)
    except ValueError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2
    except SyncError as e:
        print(f"❌ {type(e).__name__}: {e}", file=sys.stderr)
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
