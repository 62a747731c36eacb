"""
Data Quality Checks
===================
Row-level check functions over summary rows, organized by category.

Rows are plain dicts as stored in sqp.<period>_summary.
"""

import statistics
from collections import Counter

from sqp_sync.validation.core import DQReport, add_check, add_stat

REQUIRED_FIELDS = ["query", "asin", "period_start", "period_end", "impressions", "clicks", "purchases"]
KEY_FIELDS = ("period_start", "period_end", "query", "asin")
OUTLIER_FIELDS = ["impressions", "clicks", "purchases"]


def row_key(row: dict) -> tuple:
    return tuple(str(row.get(f)) for f in KEY_FIELDS)


def is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def null_counts(rows: list[dict], fields: list[str] = REQUIRED_FIELDS) -> dict[str, int]:
    """Count of blank values per required field (fields with none are omitted)."""
    counts: Counter = Counter()
    for row in rows:
        for f in fields:
            if is_blank(row.get(f)):
                counts[f] += 1
    return dict(counts)


def duplicate_keys(rows: list[dict]) -> dict[tuple, int]:
    """Natural keys that appear more than once, with their counts."""
    counts = Counter(row_key(r) for r in rows)
    return {key: n for key, n in counts.items() if n > 1}


def rule_violations(row: dict) -> list[str]:
    """Business rules every summary row must satisfy."""
    violations = []
    impressions = row.get("impressions") or 0
    clicks = row.get("clicks") or 0
    purchases = row.get("purchases") or 0

    if clicks > impressions:
        violations.append("clicks_le_impressions")
    if purchases > clicks:
        violations.append("purchases_le_clicks")
    for rate in ("ctr", "cvr"):
        value = row.get(rate)
        if value is not None and not 0 <= value <= 1:
            violations.append(f"{rate}_in_unit_range")
    asin = row.get("asin") or ""
    if len(asin) != 10 or asin != asin.upper():
        violations.append("asin_format")
    return violations


def find_outliers(rows: list[dict], zscore: float = 3.0, fields: list[str] = OUTLIER_FIELDS) -> list[dict]:
    """
    Flag values more than zscore standard deviations from the field mean.

    Needs at least three rows and non-zero spread per field.
    """
    outliers = []
    for f in fields:
        values = [float(r.get(f) or 0) for r in rows]
        if len(values) < 3:
            continue
        mean = statistics.fmean(values)
        stdev = statistics.pstdev(values)
        if stdev == 0:
            continue
        for index, value in enumerate(values):
            score = (value - mean) / stdev
            if abs(score) > zscore:
                outliers.append(
                    {
                        "index": index,
                        "field": f,
                        "value": value,
                        "mean": round(mean, 6),
                        "std_dev": round(stdev, 6),
                        "query": rows[index].get("query"),
                        "asin": rows[index].get("asin"),
                        "reason": f"z-score {score:.2f} exceeds {zscore}",
                    }
                )
    return outliers


def check_required_fields(report: DQReport, rows: list[dict]) -> None:
    """Check that required fields are populated."""
    if not rows:
        return
    nulls = null_counts(rows)
    for f in REQUIRED_FIELDS:
        add_check(
            report,
            "REQUIRED_FIELD",
            f"summary.{f} NOT NULL",
            len(rows) - nulls.get(f, 0),
            len(rows),
        )


def check_uniqueness(report: DQReport, rows: list[dict]) -> None:
    """Check natural key uniqueness."""
    if not rows:
        return
    add_check(
        report,
        "UNIQUENESS",
        "(period_start, period_end, query, asin) is unique",
        len(set(row_key(r) for r in rows)),
        len(rows),
        message="Upsert key must be unique",
    )


def check_business_logic(report: DQReport, rows: list[dict]) -> None:
    """Check funnel and rate rules."""
    if not rows:
        return
    add_check(
        report,
        "BUSINESS_LOGIC",
        "clicks <= impressions",
        sum(1 for r in rows if "clicks_le_impressions" not in rule_violations(r)),
        len(rows),
    )
    add_check(
        report,
        "BUSINESS_LOGIC",
        "purchases <= clicks",
        sum(1 for r in rows if "purchases_le_clicks" not in rule_violations(r)),
        len(rows),
    )
    add_check(
        report,
        "BUSINESS_LOGIC",
        "ASIN is a 10-character uppercase code",
        sum(1 for r in rows if "asin_format" not in rule_violations(r)),
        len(rows),
        threshold=95,
    )


def collect_statistics(report: DQReport, rows: list[dict]) -> None:
    """Collect informational statistics."""
    if not rows:
        add_stat(report, "VOLUME", "Rows", "0", description="No rows in window")
        return

    add_stat(report, "VOLUME", "Rows", f"{len(rows):,}")
    add_stat(report, "CARDINALITY", "Distinct queries", f"{len({r.get('query') for r in rows}):,}")
    add_stat(report, "CARDINALITY", "Distinct ASINs", f"{len({r.get('asin') for r in rows}):,}")

    zero_impressions = sum(1 for r in rows if not r.get("impressions"))
    add_stat(
        report,
        "COMPLETENESS",
        "Rows with zero impressions",
        f"{zero_impressions:,}/{len(rows):,} ({zero_impressions / len(rows) * 100:.1f}%)",
    )

    periods = Counter(str(r.get("period_start")) for r in rows)
    for period, n in sorted(periods.items()):
        add_stat(report, "PERIOD", f"Rows for period starting {period}", f"{n:,}")
