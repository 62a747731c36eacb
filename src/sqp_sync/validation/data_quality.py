"""
Data Quality Validation
=======================
Row-level validation report for a synced window.
"""

from dataclasses import dataclass, field

from sqp_sync.logs import get_logger
from sqp_sync.validation.checks import (
    REQUIRED_FIELDS,
    check_business_logic,
    check_required_fields,
    check_uniqueness,
    collect_statistics,
    duplicate_keys,
    find_outliers,
    is_blank,
    null_counts,
    rule_violations,
)
from sqp_sync.validation.core import DQReport


@dataclass
class ValidationReport:
    """Summary of a row-level validation pass."""

    total_records: int
    valid_records: int
    distinct_queries: int
    distinct_asins: int
    null_counts: dict = field(default_factory=dict)
    duplicates: dict = field(default_factory=dict)
    outliers: list = field(default_factory=list)
    violations_by_rule: dict = field(default_factory=dict)
    report: DQReport = field(default_factory=DQReport)

    @property
    def invalid_records(self) -> int:
        return self.total_records - self.valid_records

    @property
    def quality_score(self) -> float:
        """
        Percentage score in [0, 100].

        Invalid rows and duplicate keys count against the score; outliers
        are advisory only. An empty window scores 100.
        """
        if self.total_records == 0:
            return 100.0
        duplicate_rows = sum(n - 1 for n in self.duplicates.values())
        penalised = min(self.total_records, self.invalid_records + duplicate_rows)
        return round((self.total_records - penalised) / self.total_records * 100, 2)

    def to_dict(self) -> dict:
        return {
            "total_records": self.total_records,
            "valid_records": self.valid_records,
            "invalid_records": self.invalid_records,
            "distinct_queries": self.distinct_queries,
            "distinct_asins": self.distinct_asins,
            "quality_score": self.quality_score,
            "null_counts": self.null_counts,
            "duplicate_count": len(self.duplicates),
            "outlier_count": len(self.outliers),
            "violations_by_rule": self.violations_by_rule,
            "checks": self.report.checks,
            "statistics": self.report.statistics,
        }


def validate_data_quality(rows: list[dict], zscore: float = 3.0) -> ValidationReport:
    """
    Run comprehensive row-level validation.

    Args:
        rows: Summary rows (dicts) for the window
        zscore: Outlier threshold in standard deviations

    Returns:
        ValidationReport with checks, statistics and a quality score
    """
    logger = get_logger(__name__)
    logger.info(f"🔍 Validating {len(rows):,} rows...")

    report = DQReport()
    check_required_fields(report, rows)
    check_uniqueness(report, rows)
    check_business_logic(report, rows)
    collect_statistics(report, rows)

    nulls = null_counts(rows)
    violations_by_rule: dict[str, int] = {}
    valid = 0
    for row in rows:
        violations = rule_violations(row)
        if any(is_blank(row.get(f)) for f in REQUIRED_FIELDS):
            violations.append("required_fields")
        for rule in violations:
            violations_by_rule[rule] = violations_by_rule.get(rule, 0) + 1
        if not violations:
            valid += 1

    result = ValidationReport(
        total_records=len(rows),
        valid_records=valid,
        distinct_queries=len({r.get("query") for r in rows}),
        distinct_asins=len({r.get("asin") for r in rows}),
        null_counts=nulls,
        duplicates=duplicate_keys(rows),
        outliers=find_outliers(rows, zscore),
        violations_by_rule=violations_by_rule,
        report=report,
    )

    logger.info(
        f"   ✅ {result.valid_records:,} valid | ❌ {result.invalid_records:,} invalid | "
        f"score {result.quality_score:.2f}%"
    )
    return result
