"""
Data Comparator
===============
Compares warehouse and operational-store data for a period.

Advisory only: nothing here mutates data.
"""

from dataclasses import dataclass, field

from sqp_sync.validation.core import percent_difference

COUNT_FIELDS = ("total_rows", "distinct_queries", "distinct_asins")
MAX_DETAILS = 100


@dataclass
class CountComparison:
    """Aggregate count comparison between source and target."""

    fields: dict
    threshold_pct: float

    @property
    def discrepancies(self) -> list[str]:
        return [name for name, f in self.fields.items() if f["flagged"]]

    @property
    def has_discrepancies(self) -> bool:
        return bool(self.discrepancies)

    def to_dict(self) -> dict:
        return {
            "threshold_pct": self.threshold_pct,
            "fields": self.fields,
            "discrepancies": self.discrepancies,
        }


@dataclass
class ComparisonResult:
    """Record-level comparison of two datasets."""

    source_total: int
    target_total: int
    matches: int = 0
    mismatches: int = 0
    missing_in_target: int = 0
    extra_in_target: int = 0
    details: list = field(default_factory=list)

    @property
    def identical(self) -> bool:
        return self.mismatches == 0 and self.missing_in_target == 0 and self.extra_in_target == 0

    def to_dict(self) -> dict:
        return {
            "identical": self.identical,
            "source_total": self.source_total,
            "target_total": self.target_total,
            "matches": self.matches,
            "mismatches": self.mismatches,
            "missing_in_target": self.missing_in_target,
            "extra_in_target": self.extra_in_target,
            "details": self.details,
        }


class DataComparator:
    """
    Flags differences beyond a percentage threshold.

    Args:
        threshold_pct: Allowed difference, in percent, before a field is flagged
    """

    def __init__(self, threshold_pct: float = 1.0):
        self.threshold_pct = threshold_pct

    def compare_counts(
        self, source: dict, target: dict, fields: tuple[str, ...] = COUNT_FIELDS
    ) -> CountComparison:
        """Compare aggregate counts (rows, distinct queries, distinct ASINs)."""
        result = {}
        for name in fields:
            s = source.get(name) or 0
            t = target.get(name) or 0
            diff_pct = percent_difference(s, t)
            result[name] = {
                "source": s,
                "target": t,
                "difference": t - s,
                "difference_pct": round(diff_pct, 4),
                "flagged": diff_pct > self.threshold_pct,
            }
        return CountComparison(fields=result, threshold_pct=self.threshold_pct)

    def values_match(self, source, target, tolerance_pct: float = 0.0) -> bool:
        if source is None:
            return target is None
        if isinstance(source, (int, float)) and isinstance(target, (int, float)):
            if tolerance_pct > 0:
                return percent_difference(source, target) <= tolerance_pct
            return source == target
        return source == target

    def compare_datasets(
        self,
        source_rows: list[dict],
        target_rows: list[dict],
        key_fields: list[str],
        value_fields: list[str],
        tolerance_pct: float = 0.0,
    ) -> ComparisonResult:
        """
        Compare two datasets record by record.

        Details are capped at 100 entries; counts are always complete.
        """

        def key_of(row: dict) -> str:
            return "|".join("" if row.get(f) is None else str(row.get(f)) for f in key_fields)

        source_map = {key_of(r): r for r in source_rows}
        target_map = {key_of(r): r for r in target_rows}
        result = ComparisonResult(source_total=len(source_rows), target_total=len(target_rows))

        for key, source in source_map.items():
            target = target_map.get(key)
            if target is None:
                result.missing_in_target += 1
                if len(result.details) < MAX_DETAILS:
                    result.details.append({"type": "missing", "key": key, "source": source})
                continue

            differences = [
                {
                    "field": f,
                    "source_value": source.get(f),
                    "target_value": target.get(f),
                }
                for f in value_fields
                if not self.values_match(source.get(f), target.get(f), tolerance_pct)
            ]
            if differences:
                result.mismatches += 1
                if len(result.details) < MAX_DETAILS:
                    result.details.append({"type": "mismatch", "key": key, "differences": differences})
            else:
                result.matches += 1

        for key, target in target_map.items():
            if key not in source_map:
                result.extra_in_target += 1
                if len(result.details) < MAX_DETAILS:
                    result.details.append({"type": "extra", "key": key, "target": target})

        return result
