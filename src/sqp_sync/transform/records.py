"""
SQP Record Transformer
======================
Maps warehouse rows onto sqp.<period>_summary rows.

All functions are pure. Rates are fractions in [0, 1] rounded to 6 places;
counts are never rounded. Shares are only meaningful after
compute_group_shares() has seen every ASIN of a query group.
"""

import math
import re
from collections import defaultdict
from dataclasses import asdict, dataclass, replace
from datetime import date
from decimal import Decimal, InvalidOperation

from sqp_sync.logs import get_logger
from sqp_sync.transform.periods import SyncWindow, parse_date, period_bounds

RATE_DECIMALS = 6
ASIN_LENGTH = 10
ASIN_PATTERN = re.compile(r"^[A-Z0-9]{10}$")


@dataclass(frozen=True)
class TransformedRecord:
    """One row of a period summary table."""

    period_start: date
    period_end: date
    query: str
    asin: str
    impressions: int = 0
    clicks: int = 0
    cart_adds: int = 0
    purchases: int = 0
    ctr: float = 0.0
    cvr: float = 0.0
    cart_add_rate: float = 0.0
    purchases_per_impression: float = 0.0
    impression_share: float = 0.0
    click_share: float = 0.0
    purchase_share: float = 0.0
    market_impressions: int = 0
    market_clicks: int = 0
    market_cart_adds: int = 0
    market_purchases: int = 0
    search_query_score: int = 0
    search_query_volume: int = 0
    source_date: date | None = None

    @property
    def key(self) -> tuple[str, str, str, str]:
        """Natural key used for upserts."""
        return (self.period_start.isoformat(), self.period_end.isoformat(), self.query, self.asin)

    def to_row(self) -> dict:
        """Serialize for the operational store."""
        row = asdict(self)
        row.pop("source_date")
        row["period_start"] = self.period_start.isoformat()
        row["period_end"] = self.period_end.isoformat()
        return row


# =============================================================================
# Parsing helpers
# =============================================================================


def _to_number(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, Decimal):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(Decimal(value.strip().replace(",", "")))
        except (InvalidOperation, ValueError):
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def safe_int(value) -> int:
    """Parse a count. Missing or non-numeric values become 0; never raises."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    number = _to_number(value)
    return int(number) if number is not None else 0


def safe_float(value, decimals: int = RATE_DECIMALS) -> float:
    """Parse a rate. Missing or non-numeric values become 0.0; never raises."""
    number = _to_number(value)
    return round(number, decimals) if number is not None else 0.0


def ratio(numerator: int, denominator: int) -> float:
    """numerator / denominator rounded to 6 places; 0.0 when denominator is 0."""
    if not denominator:
        return 0.0
    return round(numerator / denominator, RATE_DECIMALS)


def normalize_query(value) -> str:
    """Trim and lower-case a search query so joins are stable."""
    if value is None:
        return ""
    return str(value).strip().lower()


def normalize_asin(value) -> str:
    """
    Upper-case and trim an ASIN.

    Malformed codes are logged but returned as-is; validate_record() decides
    whether the row is rejected.
    """
    if value is None:
        return ""
    asin = str(value).strip().upper()
    if asin and not ASIN_PATTERN.match(asin):
        get_logger(__name__).warning(f"⚠️  Malformed ASIN: {asin!r}")
    return asin


# =============================================================================
# Transform
# =============================================================================


def to_record(raw: dict, window: SyncWindow, week_starts_on: int = 0) -> TransformedRecord:
    """
    Transform one warehouse row.

    Rate fields supplied upstream are kept; missing ones are derived from
    the counts. Share fields are left at 0 for compute_group_shares().

    Args:
        raw: Warehouse row (see warehouse.queries.SOURCE_COLUMNS)
        window: Window being synced; decides the period bucketing
        week_starts_on: 0 = Monday ... 6 = Sunday
    """
    source_date = parse_date(raw.get("start_date")) or window.start
    period_start, period_end = period_bounds(source_date, window.period_type, week_starts_on)

    impressions = safe_int(raw.get("asin_impression_count"))
    clicks = safe_int(raw.get("asin_click_count"))
    cart_adds = safe_int(raw.get("asin_cart_add_count"))
    purchases = safe_int(raw.get("asin_purchase_count"))

    upstream_ctr = _to_number(raw.get("asin_click_rate"))
    upstream_cvr = _to_number(raw.get("asin_conversion_rate"))

    return TransformedRecord(
        period_start=period_start,
        period_end=period_end,
        query=normalize_query(raw.get("search_query")),
        asin=normalize_asin(raw.get("asin")),
        impressions=impressions,
        clicks=clicks,
        cart_adds=cart_adds,
        purchases=purchases,
        ctr=round(upstream_ctr, RATE_DECIMALS) if upstream_ctr is not None else ratio(clicks, impressions),
        cvr=round(upstream_cvr, RATE_DECIMALS) if upstream_cvr is not None else ratio(purchases, clicks),
        cart_add_rate=ratio(cart_adds, clicks),
        purchases_per_impression=ratio(purchases, impressions),
        market_impressions=safe_int(raw.get("total_query_impression_count")),
        market_clicks=safe_int(raw.get("total_click_count")),
        market_cart_adds=safe_int(raw.get("total_cart_add_count")),
        market_purchases=safe_int(raw.get("total_purchase_count")),
        search_query_score=safe_int(raw.get("search_query_score")),
        search_query_volume=safe_int(raw.get("search_query_volume")),
        source_date=source_date,
    )


def merge_duplicates(records: list[TransformedRecord]) -> list[TransformedRecord]:
    """
    Collapse rows sharing a natural key (e.g. several days in one week).

    Counts are summed, market totals keep the largest value seen, and rates
    are re-derived from the summed counts. First-seen order is preserved.
    """
    merged: dict[tuple, TransformedRecord] = {}
    duplicated: set[tuple] = set()

    for record in records:
        existing = merged.get(record.key)
        if existing is None:
            merged[record.key] = record
            continue

        duplicated.add(record.key)
        merged[record.key] = replace(
            existing,
            impressions=existing.impressions + record.impressions,
            clicks=existing.clicks + record.clicks,
            cart_adds=existing.cart_adds + record.cart_adds,
            purchases=existing.purchases + record.purchases,
            market_impressions=max(existing.market_impressions, record.market_impressions),
            market_clicks=max(existing.market_clicks, record.market_clicks),
            market_cart_adds=max(existing.market_cart_adds, record.market_cart_adds),
            market_purchases=max(existing.market_purchases, record.market_purchases),
            search_query_volume=max(existing.search_query_volume, record.search_query_volume),
        )

    for key in duplicated:
        r = merged[key]
        merged[key] = replace(
            r,
            ctr=ratio(r.clicks, r.impressions),
            cvr=ratio(r.purchases, r.clicks),
            cart_add_rate=ratio(r.cart_adds, r.clicks),
            purchases_per_impression=ratio(r.purchases, r.impressions),
        )

    return list(merged.values())


def compute_group_shares(records: list[TransformedRecord]) -> list[TransformedRecord]:
    """
    Assign each record its share of its query group's totals.

    Groups are (period_start, period_end, query). A group whose total is 0
    gives every member a share of 0.0.

    Returns:
        New records in the same order as the input
    """
    totals: dict[tuple, list[int]] = defaultdict(lambda: [0, 0, 0])
    for r in records:
        group = totals[(r.period_start, r.period_end, r.query)]
        group[0] += r.impressions
        group[1] += r.clicks
        group[2] += r.purchases

    shared = []
    for r in records:
        total_impressions, total_clicks, total_purchases = totals[(r.period_start, r.period_end, r.query)]
        shared.append(
            replace(
                r,
                impression_share=ratio(r.impressions, total_impressions),
                click_share=ratio(r.clicks, total_clicks),
                purchase_share=ratio(r.purchases, total_purchases),
            )
        )
    return shared


# =============================================================================
# Validation
# =============================================================================


def validate_record(record: TransformedRecord) -> list[str]:
    """
    Check row-level invariants.

    Returns:
        Human-readable violations; empty when the record is valid
    """
    violations = []

    if not record.query:
        violations.append("Query cannot be empty")

    if len(record.asin) != ASIN_LENGTH:
        violations.append(f"ASIN must be {ASIN_LENGTH} characters (got {record.asin!r})")

    if not record.period_start or not record.period_end:
        violations.append("Period dates are required")
    elif record.period_start > record.period_end:
        violations.append("period_start is after period_end")

    for field_name in ("impressions", "clicks", "cart_adds", "purchases"):
        if getattr(record, field_name) < 0:
            violations.append(f"{field_name} cannot be negative")

    if record.clicks > record.impressions:
        violations.append(f"clicks ({record.clicks}) exceed impressions ({record.impressions})")

    if record.purchases > record.clicks:
        violations.append(f"purchases ({record.purchases}) exceed clicks ({record.clicks})")

    for field_name in ("ctr", "cvr"):
        value = getattr(record, field_name)
        if not 0 <= value <= 1:
            violations.append(f"{field_name} must be within [0, 1] (got {value})")

    return violations
