"""Monthly freshness rules for cached snapshots."""
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from traffic_bulk.config import config


def _now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def current_month(now: Optional[datetime] = None) -> str:
    """Accounting month as YYYY-MM (UTC)."""
    return _now(now).strftime("%Y-%m")


def previous_month(month_year: str) -> str:
    year, month = (int(part) for part in month_year.split("-"))
    if month == 1:
        return f"{year - 1}-12"
    return f"{year}-{month - 1:02d}"


def months_back(month_year: str, count: int) -> str:
    """The month ``count`` months before ``month_year``."""
    year, month = (int(part) for part in month_year.split("-"))
    index = year * 12 + (month - 1) - count
    return f"{index // 12}-{index % 12 + 1:02d}"


def is_snapshot_fresh(
    month_year: str,
    checked_at: datetime,
    max_age_days: int = config.CACHE_TTL_DAYS,
    now: Optional[datetime] = None,
) -> bool:
    """
    A snapshot is reusable only for the month it was taken in, and only while
    it is younger than ``max_age_days``. Any other month is stale.
    """
    now = _now(now)
    if month_year != current_month(now):
        return False
    return now - _aware(checked_at) <= timedelta(days=max_age_days)


def next_refresh_date(now: Optional[datetime] = None, cutoff_day: int = config.UPDATE_CUTOFF_DAY) -> date:
    """
    Day on which proactive re-scrapes should start.

    The upstream publishes the previous month's figures around the 10th; the
    cutoff day adds a buffer. Scheduling aid only, not used for freshness.
    """
    today = _now(now).date()
    this_month = today.replace(day=cutoff_day)
    if today < this_month:
        return this_month
    if today.month == 12:
        return date(today.year + 1, 1, cutoff_day)
    return date(today.year, today.month + 1, cutoff_day)
