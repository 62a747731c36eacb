"""
Transform Layer
===============
Pure functions: warehouse rows → summary rows, period arithmetic.
"""

from sqp_sync.transform.periods import (
    PeriodType,
    SyncWindow,
    last_completed_period_end,
    last_completed_window,
    parse_date,
    period_bounds,
)
from sqp_sync.transform.records import (
    TransformedRecord,
    compute_group_shares,
    merge_duplicates,
    normalize_asin,
    normalize_query,
    safe_float,
    safe_int,
    to_record,
    validate_record,
)

__all__ = [
    "PeriodType",
    "SyncWindow",
    "TransformedRecord",
    "compute_group_shares",
    "last_completed_period_end",
    "last_completed_window",
    "merge_duplicates",
    "normalize_asin",
    "normalize_query",
    "parse_date",
    "period_bounds",
    "safe_float",
    "safe_int",
    "to_record",
    "validate_record",
]
