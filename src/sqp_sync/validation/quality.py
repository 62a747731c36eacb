"""
Post-Sync Quality Checks
========================
Warehouse vs operational-store parity checks for a synced window.

Each check returns a CheckResult; the scheduler persists them as
sqp.data_quality_checks rows. A failing check never rolls back a sync.
"""

from sqp_sync.config import Settings
from sqp_sync.db import OperationalStore, summary_table
from sqp_sync.logs import get_logger
from sqp_sync.transform.periods import SyncWindow
from sqp_sync.validation.checks import REQUIRED_FIELDS, duplicate_keys, null_counts
from sqp_sync.validation.comparator import CountComparison, DataComparator
from sqp_sync.validation.core import CheckResult, percent_difference
from sqp_sync.warehouse.pool import ConnectionPool
from sqp_sync.warehouse.queries import build_aggregate_query

SUM_COLUMNS = {
    "total_impressions": "impressions",
    "total_clicks": "clicks",
    "total_purchases": "purchases",
}


def window_params(window: SyncWindow) -> dict:
    return {"start_date": window.start, "end_date": window.end}


def store_bounds(window: SyncWindow, week_starts_on: int = 0) -> tuple[dict, dict]:
    """gte/lte filters selecting the summary rows for every period in window."""
    periods = window.periods(week_starts_on)
    return (
        {"period_start": periods[0][0].isoformat()},
        {"period_end": periods[-1][1].isoformat()},
    )


class QualityChecker:
    """Runs row-count, sum-total, null and duplicate checks for one window."""

    def __init__(self, pool: ConnectionPool, store: OperationalStore, settings: Settings):
        self.pool = pool
        self.store = store
        self.settings = settings
        self.comparator = DataComparator(settings.comparison_threshold_pct)

    # ------------------------------------------------------------------ loads

    def warehouse_totals(self, window: SyncWindow) -> dict:
        """Aggregate counts and sums from the warehouse for the window."""
        sql = build_aggregate_query(
            self.settings.source_table, window.period_type.value, self.settings.week_starts_on
        )
        with self.pool.connection() as client:
            rows = client.query(sql, window_params(window), timeout=self.settings.query_timeout_seconds)
        return rows[0] if rows else {}

    def store_rows(self, window: SyncWindow) -> list[dict]:
        """Summary rows stored for the window's periods."""
        gte, lte = store_bounds(window, self.settings.week_starts_on)
        return self.store.select_all(summary_table(window.period_type.value), gte=gte, lte=lte)

    @staticmethod
    def store_totals(rows: list[dict]) -> dict:
        """The same aggregates as warehouse_totals(), computed over stored rows."""
        totals = {
            "total_rows": len(rows),
            "distinct_queries": len({r.get("query") for r in rows}),
            "distinct_asins": len({r.get("asin") for r in rows}),
        }
        for total_name, column in SUM_COLUMNS.items():
            totals[total_name] = sum(r.get(column) or 0 for r in rows)
        return totals

    # ----------------------------------------------------------------- checks

    def row_count_check(self, source: dict, rows: list[dict]) -> CheckResult:
        source_count = source.get("total_rows") or 0
        target_count = len(rows)
        diff_pct = percent_difference(source_count, target_count)
        return CheckResult(
            type="row_count",
            passed=diff_pct <= self.settings.comparison_threshold_pct,
            details={
                "source_count": source_count,
                "target_count": target_count,
                "difference": target_count - source_count,
                "difference_pct": round(diff_pct, 4),
                "message": f"Warehouse {source_count:,} vs store {target_count:,}",
            },
        )

    def sum_checks(self, source: dict, rows: list[dict]) -> list[CheckResult]:
        target = self.store_totals(rows)
        checks = []
        for total_name in SUM_COLUMNS:
            s = source.get(total_name) or 0
            t = target[total_name]
            diff_pct = percent_difference(s, t)
            checks.append(
                CheckResult(
                    type="sum_validation",
                    passed=diff_pct <= self.settings.sum_tolerance_pct,
                    details={
                        "column": total_name,
                        "source_sum": s,
                        "target_sum": t,
                        "difference_pct": round(diff_pct, 4),
                        "message": f"{total_name}: warehouse {s:,} vs store {t:,}",
                    },
                )
            )
        return checks

    def null_check(self, rows: list[dict]) -> CheckResult:
        nulls = null_counts(rows)
        total = sum(nulls.values())
        return CheckResult(
            type="null_check",
            passed=total == 0,
            details={
                "null_count": total,
                "null_counts": nulls,
                "checked_columns": REQUIRED_FIELDS,
                "message": "No nulls in required columns" if total == 0 else f"{total:,} null values",
            },
        )

    def duplicate_check(self, rows: list[dict]) -> CheckResult:
        duplicates = duplicate_keys(rows)
        return CheckResult(
            type="duplicate_check",
            passed=not duplicates,
            details={
                "duplicate_keys": len(duplicates),
                "sample": ["|".join(k) for k in list(duplicates)[:10]],
                "message": "Natural keys unique" if not duplicates else f"{len(duplicates):,} duplicated keys",
            },
        )

    def validate_row_count(self, window: SyncWindow) -> CheckResult:
        return self.row_count_check(self.warehouse_totals(window), self.store_rows(window))

    def validate_sum_totals(self, window: SyncWindow) -> list[CheckResult]:
        return self.sum_checks(self.warehouse_totals(window), self.store_rows(window))

    def validate_no_nulls(self, window: SyncWindow) -> CheckResult:
        return self.null_check(self.store_rows(window))

    def run_checks(self, window: SyncWindow) -> list[CheckResult]:
        """All post-sync checks, loading each side once."""
        logger = get_logger(__name__)
        logger.info(f"🔍 Running quality checks for {window.start} to {window.end}")

        source = self.warehouse_totals(window)
        rows = self.store_rows(window)

        checks = [self.row_count_check(source, rows)]
        checks.extend(self.sum_checks(source, rows))
        checks.append(self.null_check(rows))
        checks.append(self.duplicate_check(rows))

        for check in checks:
            icon = "✅" if check.passed else "❌"
            logger.info(f"   {icon} {check.type}: {check.message}")

        return checks

    def compare_with_store(self, window: SyncWindow) -> CountComparison:
        """Row/query/ASIN count comparison for the window."""
        return self.comparator.compare_counts(
            self.warehouse_totals(window), self.store_totals(self.store_rows(window))
        )
