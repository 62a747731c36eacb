"""
Period Arithmetic
=================
Week/month/quarter/year boundaries and the sync window type.
"""

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum


class PeriodType(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


def parse_date(value) -> date | None:
    """
    Parse the date shapes BigQuery and PostgREST hand back.

    Accepts date, datetime, 'YYYY-MM-DD' and ISO timestamps. Returns None for
    anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value.split("T")[0].split(" ")[0])
        except ValueError:
            return None
    return None


def period_bounds(day: date, period_type: str, week_starts_on: int = 0) -> tuple[date, date]:
    """
    Inclusive (start, end) of the period containing day.

    Args:
        day: Any date inside the period
        period_type: weekly | monthly | quarterly | yearly
        week_starts_on: 0 = Monday ... 6 = Sunday
    """
    period_type = PeriodType(period_type)

    if period_type is PeriodType.WEEKLY:
        start = day - timedelta(days=(day.weekday() - week_starts_on) % 7)
        return start, start + timedelta(days=6)

    if period_type is PeriodType.MONTHLY:
        start = day.replace(day=1)
        return start, day.replace(day=monthrange(day.year, day.month)[1])

    if period_type is PeriodType.QUARTERLY:
        first_month = 3 * ((day.month - 1) // 3) + 1
        start = date(day.year, first_month, 1)
        last_month = first_month + 2
        return start, date(day.year, last_month, monthrange(day.year, last_month)[1])

    return date(day.year, 1, 1), date(day.year, 12, 31)


def last_completed_period_end(today: date, period_type: str, week_starts_on: int = 0) -> date:
    """End of the most recent period that is fully in the past."""
    current_start, _ = period_bounds(today, period_type, week_starts_on)
    return current_start - timedelta(days=1)


@dataclass(frozen=True)
class SyncWindow:
    """Inclusive date window for one sync pass."""

    start: date
    end: date
    period_type: PeriodType = PeriodType.WEEKLY

    def __post_init__(self):
        object.__setattr__(self, "period_type", PeriodType(self.period_type))
        if self.start > self.end:
            raise ValueError(f"Window start {self.start} is after end {self.end}")

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def periods(self, week_starts_on: int = 0) -> list[tuple[date, date]]:
        """Period buckets overlapping this window, oldest first."""
        buckets = []
        cursor = self.start
        while cursor <= self.end:
            start, end = period_bounds(cursor, self.period_type, week_starts_on)
            buckets.append((start, end))
            cursor = end + timedelta(days=1)
        return buckets

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "period_type": self.period_type.value,
        }


def last_completed_window(today: date, period_type: str = "weekly", week_starts_on: int = 0) -> SyncWindow:
    """The most recent fully completed period as a window."""
    end = last_completed_period_end(today, period_type, week_starts_on)
    start, _ = period_bounds(end, period_type, week_starts_on)
    return SyncWindow(start, end, period_type)
