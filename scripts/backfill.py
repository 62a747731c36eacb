#!/usr/bin/env python3
"""
Backfill Script
===============
Syncs a historical date range one calendar month at a time.

A month owns the periods that start inside it, so a week straddling a month
boundary is synced whole, exactly once. The checkpoint file is rewritten
after every month and a re-run picks up whatever is still pending.

Usage:
    python scripts/backfill.py --start 2024-01 --end 2024-12
    python scripts/backfill.py --start 2024-01 --end 2024-12 --period-type monthly
    python scripts/backfill.py --start 2024-01 --end 2024-12 --dry-run
    python scripts/backfill.py --start 2024-01 --end 2024-12 --reset
"""

import argparse
import json
import sys
from calendar import monthrange
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path

from sqp_sync.config import get_settings
from sqp_sync.db import OperationalStore
from sqp_sync.sync.service import SyncService
from sqp_sync.transform import SyncWindow, last_completed_period_end, period_bounds
from sqp_sync.warehouse.pool import create_pool

CHECKPOINT_FILE = Path(__file__).parent / ".backfill_checkpoint.json"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True, order=True)
class Month:
    year: int
    month: int

    @classmethod
    def parse(cls, key: str) -> "Month":
        """Parse a YYYY-MM key; raises ValueError when malformed."""
        year_text, sep, month_text = key.partition("-")
        if not sep or len(year_text) != 4 or len(month_text) != 2:
            raise ValueError(f"expected YYYY-MM, got {key!r}")
        month = cls(int(year_text), int(month_text))
        if not 1 <= month.month <= 12:
            raise ValueError(f"month out of range in {key!r}")
        return month

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, monthrange(self.year, self.month)[1])

    def following(self) -> "Month":
        if self.month == 12:
            return Month(self.year + 1, 1)
        return Month(self.year, self.month + 1)


@dataclass
class Checkpoint:
    """Backfill progress: finished months with their row counts, plus failures."""

    synced: dict[str, int] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)

    def done(self, key: str) -> bool:
        return key in self.synced

    def record_success(self, key: str, rows: int) -> None:
        self.synced[key] = rows
        self.failed.pop(key, None)

    def record_failure(self, key: str, error: str | None) -> None:
        self.failed[key] = error or "unknown error"

    @classmethod
    def load(cls, path: Path) -> "Checkpoint":
        if not path.exists():
            return cls()
        data = json.loads(path.read_text())
        return cls(synced=dict(data.get("synced", {})), failed=dict(data.get("failed", {})))

    def save(self, path: Path) -> None:
        path.write_text(json.dumps({"synced": self.synced, "failed": self.failed}, indent=2, sort_keys=True))


@dataclass
class MonthOutcome:
    """What happened to one month of the backfill."""

    month: str
    success: bool
    window: SyncWindow | None = None
    source_records: int = 0
    synced: int = 0
    failed_rows: int = 0
    error: str | None = None

    @property
    def skipped(self) -> bool:
        return self.success and self.window is None


# =============================================================================
# Planning
# =============================================================================


def months_between(start: Month, end: Month) -> list[Month]:
    """Every month from start through end, inclusive. Empty when start > end."""
    months = []
    current = start
    while current <= end:
        months.append(current)
        current = current.following()
    return months


def month_arg(value: str) -> Month:
    """argparse type for --start/--end."""
    try:
        return Month.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def month_window(
    month: Month,
    period_type: str = "weekly",
    week_starts_on: int = 0,
    today: date | None = None,
) -> SyncWindow | None:
    """
    Window covering the whole periods that start inside the month.

    The current (incomplete) period is never included, so recent months are
    cut short and a month with no finished period yields None.
    """
    start, end = period_bounds(month.first_day, period_type, week_starts_on)
    if start < month.first_day:
        start = end + timedelta(days=1)
    _, end = period_bounds(month.last_day, period_type, week_starts_on)
    end = min(end, last_completed_period_end(today or date.today(), period_type, week_starts_on))

    if start > end:
        return None
    return SyncWindow(start, end, period_type)


# =============================================================================
# Runner
# =============================================================================


def process_month(window: SyncWindow | None, key: str, service: SyncService) -> MonthOutcome:
    if window is None:
        return MonthOutcome(month=key, success=True)

    try:
        result = service.sync_period_data(window.period_type, window.start, window.end)
    except Exception as exc:
        return MonthOutcome(month=key, success=False, window=window, error=str(exc))

    return MonthOutcome(
        month=key,
        success=result.success,
        window=window,
        source_records=result.source_records,
        synced=result.records_synced,
        failed_rows=result.records_failed,
        error=result.error,
    )


def run_backfill(
    start: Month,
    end: Month,
    period_type: str = "weekly",
    dry_run: bool = False,
    stop_on_error: bool = False,
    service: SyncService | None = None,
    checkpoint_path: Path = CHECKPOINT_FILE,
) -> list[MonthOutcome]:
    """
    Sync each pending month in order, checkpointing after every one.

    Args:
        start: First month
        end: Last month (inclusive)
        period_type: Summary granularity to sync
        dry_run: Print the plan only
        stop_on_error: Stop at the first failed month
        service: SyncService to use (built from settings when omitted)
        checkpoint_path: Progress file

    Returns:
        One outcome per month processed
    """
    settings = get_settings()
    checkpoint = Checkpoint.load(checkpoint_path)
    months = months_between(start, end)
    pending = [m for m in months if not checkpoint.done(m.key)]

    print(f"\n{'=' * 60}")
    print(f"SQP BACKFILL {start.key} .. {end.key} [{period_type}]")
    print(f"{'=' * 60}")
    print(f"Months in range: {len(months)}  done: {len(months) - len(pending)}  pending: {len(pending)}\n")

    if not pending:
        print("Nothing to do.")
        return []

    plan = [(m, month_window(m, period_type, settings.week_starts_on)) for m in pending]

    if dry_run:
        for month, window in plan:
            span = f"{window.start} .. {window.end}" if window else "(no finished period)"
            print(f"  {month.key}: {span}")
        return []

    pool = None
    if service is None:
        pool = create_pool(settings)
        service = SyncService(pool, OperationalStore.from_settings(settings), settings)

    outcomes = []
    try:
        for index, (month, window) in enumerate(plan, 1):
            print(f"[{index}/{len(plan)}] {month.key}", end=" ")
            outcome = process_month(window, month.key, service)
            outcomes.append(outcome)

            if outcome.success:
                checkpoint.record_success(month.key, outcome.synced)
            else:
                checkpoint.record_failure(month.key, outcome.error)
            checkpoint.save(checkpoint_path)

            if outcome.skipped:
                print("skipped, no finished period")
            elif outcome.success:
                print(
                    f"read {outcome.source_records:,} synced {outcome.synced:,} "
                    f"row errors {outcome.failed_rows:,}"
                )
            else:
                print(f"FAILED: {outcome.error}")
                if stop_on_error:
                    print("Stopped; re-run to resume from the checkpoint.")
                    break
    finally:
        if pool is not None:
            pool.drain(timeout=30)

    failures = [o.month for o in outcomes if not o.success]
    print(f"\n{len(outcomes) - len(failures)} months ok, {len(failures)} failed {failures or ''}")
    return outcomes


# =============================================================================
# CLI
# =============================================================================


def main():
    parser = argparse.ArgumentParser(description="Backfill SQP summaries month by month")
    parser.add_argument("--start", required=True, type=month_arg, help="First month (YYYY-MM)")
    parser.add_argument("--end", required=True, type=month_arg, help="Last month (YYYY-MM)")
    parser.add_argument("--period-type", default="weekly", choices=["weekly", "monthly", "quarterly", "yearly"])
    parser.add_argument("--dry-run", action="store_true", help="Print the plan without syncing")
    parser.add_argument("--stop-on-error", action="store_true", help="Stop at the first failed month")
    parser.add_argument("--reset", action="store_true", help="Discard the checkpoint first")
    args = parser.parse_args()

    if args.start > args.end:
        parser.error("--start must not be after --end")

    if args.reset:
        CHECKPOINT_FILE.unlink(missing_ok=True)
        print("Checkpoint cleared")

    outcomes = run_backfill(
        args.start,
        args.end,
        period_type=args.period_type,
        dry_run=args.dry_run,
        stop_on_error=args.stop_on_error,
    )
    if any(not o.success for o in outcomes):
        sys.exit(1)


if __name__ == "__main__":
    main()
