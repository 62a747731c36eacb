"""
Validation Layer
================
Row-level data quality, post-sync parity checks and comparison.
"""

from sqp_sync.validation.comparator import DataComparator
from sqp_sync.validation.core import CheckResult, DQReport, add_check, add_stat
from sqp_sync.validation.data_quality import ValidationReport, validate_data_quality
from sqp_sync.validation.quality import QualityChecker

__all__ = [
    "CheckResult",
    "DQReport",
    "DataComparator",
    "QualityChecker",
    "ValidationReport",
    "add_check",
    "add_stat",
    "validate_data_quality",
]
