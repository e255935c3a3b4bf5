"""Month-over-month growth from historical visits."""
import logging
from typing import Iterable, Optional

from traffic_bulk.parse.models import HistoricalMonthData
from traffic_bulk.store.freshness import current_month as this_month

logger = logging.getLogger(__name__)


def growth_rate(
    current: Optional[int],
    history: Iterable[HistoricalMonthData],
    current_month: Optional[str] = None,
) -> Optional[float]:
    """
    Percent change of ``current`` against the newest month before the current one.

    Returns None when there is no usable previous month (missing, zero visits)
    or no current figure. Never raises.
    """
    if current is None:
        return None
    month = current_month or this_month()
    try:
        ordered = sorted(history, key=lambda m: m.month_year, reverse=True)
    except (TypeError, AttributeError) as e:
        logger.debug(f"Unusable history for growth: {e}")
        return None

    previous = next((m for m in ordered if m.month_year != month), None)
    if previous is None or not previous.monthly_visits or previous.monthly_visits <= 0:
        return None
    return round((current - previous.monthly_visits) / previous.monthly_visits * 100, 2)


def merge_history(
    extracted: Iterable[HistoricalMonthData],
    stored: Iterable[HistoricalMonthData],
) -> list[HistoricalMonthData]:
    """Union by month with freshly extracted values winning; newest first."""
    merged: dict[str, HistoricalMonthData] = {}
    for month in extracted:
        merged.setdefault(month.month_year, month)
    for month in stored:
        if month.monthly_visits is not None:
            merged.setdefault(month.month_year, month)
    return sorted(merged.values(), key=lambda m: m.month_year, reverse=True)
