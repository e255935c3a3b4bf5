"""Trend summaries over the newest stored monthly snapshots."""
from typing import Iterable, Optional

from traffic_bulk.parse.models import TrafficSnapshot, TrendSummary

PERIODS = {"1m": 1, "3m": 3, "6m": 6, "12m": 12}
DEFAULT_PERIOD = "12m"


def months_for_period(period: Optional[str]) -> int:
    """Months covered by a period label; unknown labels mean 12."""
    return PERIODS.get((period or DEFAULT_PERIOD).lower(), PERIODS[DEFAULT_PERIOD])


def _mean(values: list[float]) -> Optional[float]:
    if not values:
        return None
    return round(sum(values) / len(values), 2)


def summarize(period: str, snapshots: list[TrafficSnapshot]) -> TrendSummary:
    visits = [s.monthly_visits for s in snapshots if s.monthly_visits is not None]
    return TrendSummary(
        period=period,
        avg_monthly_visits=_mean(visits) or 0.0,
        total_visits=sum(visits),
        avg_bounce_rate=_mean([s.bounce_rate for s in snapshots if s.bounce_rate is not None]),
        avg_pages_per_visit=_mean([s.pages_per_visit for s in snapshots if s.pages_per_visit is not None]),
        data_points=len(snapshots),
    )


def calculate_trends(history: Iterable[TrafficSnapshot]) -> list[TrendSummary]:
    """One summary per period that has at least one snapshot."""
    ordered = sorted(history, key=lambda s: s.month_year, reverse=True)
    trends = []
    for period, months in PERIODS.items():
        window = ordered[:months]
        if window:
            trends.append(summarize(period, window))
    return trends
