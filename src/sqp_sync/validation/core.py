"""
Validation Core
===============
Post-sync check results and the row-level DQ report they roll up into.
"""

from dataclasses import dataclass, field


@dataclass
class CheckResult:
    """Outcome of one post-sync check, persisted as a data_quality_checks row."""

    type: str
    passed: bool
    details: dict = field(default_factory=dict)

    @property
    def status(self) -> str:
        return "passed" if self.passed else "failed"

    @property
    def message(self) -> str:
        return self.details.get("message", "")

    def to_row(self, sync_log_id: int) -> dict:
        return {
            "sync_log_id": sync_log_id,
            "check_type": self.type,
            "check_status": self.status,
            "check_message": self.message,
            "check_metadata": self.details,
        }


# A check below its threshold but within this many points of it warns
WARN_BAND = 15


@dataclass
class DQReport:
    """Accumulates row-level checks and informational statistics."""

    checks: list[dict] = field(default_factory=list)
    statistics: list[dict] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for c in self.checks if c["status"] == status)

    @property
    def passed(self) -> int:
        return self.count("PASS")

    @property
    def failed(self) -> int:
        return self.count("FAIL")

    @property
    def warnings(self) -> int:
        return self.count("WARN")

    @property
    def total(self) -> int:
        return len(self.checks)


def percent_difference(source: float, target: float) -> float:
    """|target - source| as a percentage of source (100 when only target is non-zero)."""
    if source == 0:
        return 0.0 if target == 0 else 100.0
    return abs(target - source) / abs(source) * 100


def grade(pct: float, threshold: int = 100) -> str:
    if pct >= threshold:
        return "PASS"
    if pct >= threshold - WARN_BAND:
        return "WARN"
    return "FAIL"


def add_check(
    report: DQReport,
    category: str,
    check_name: str,
    passed: int,
    total: int,
    message: str = "",
    threshold: int = 100,
) -> None:
    """
    Grade a rule over `total` summary rows of which `passed` satisfied it.

    Args:
        report: Report to append to
        category: Rule family, e.g. 'BUSINESS_LOGIC'
        check_name: Human-readable rule
        passed: Rows satisfying the rule
        total: Rows evaluated
        message: Note shown next to the result
        threshold: Percentage needed for PASS
    """
    # No rows means nothing violated the rule
    pct = passed / total * 100 if total else 100.0
    report.checks.append(
        {
            "category": category,
            "check": check_name,
            "status": grade(pct, threshold),
            "passed": passed,
            "total": total,
            "percentage": f"{pct:.1f}%",
            "message": message,
        }
    )


def add_stat(report: DQReport, category: str, metric: str, value: str, description: str = "") -> None:
    report.statistics.append({"category": category, "metric": metric, "value": value, "description": description})
