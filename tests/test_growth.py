"""
Tests for growth rate and trend calculations.
"""
from datetime import datetime, timezone

from traffic_bulk.analysis.growth import growth_rate, merge_history
from traffic_bulk.analysis.trends import calculate_trends, months_for_period
from traffic_bulk.parse.models import HistoricalMonthData, TrafficSnapshot


def _month(month_year, visits):
    return HistoricalMonthData(month_year=month_year, monthly_visits=visits)


def test_growth_against_previous_month():
    """Test 1196 vs 1000 previous month is +19.6%."""
    assert growth_rate(1196, [_month("2025-10", 1000)], current_month="2025-11") == 19.6


def test_growth_skips_current_month():
    """Test the current month's own history entry is not the comparison point."""
    history = [_month("2025-11", 5000), _month("2025-09", 800), _month("2025-10", 1000)]
    assert growth_rate(900, history, current_month="2025-11") == -10.0


def test_growth_without_usable_previous_month():
    """Test missing, zero or null previous visits give None."""
    assert growth_rate(1000, [], current_month="2025-11") is None
    assert growth_rate(1000, [_month("2025-11", 900)], current_month="2025-11") is None
    assert growth_rate(1000, [_month("2025-10", 0)], current_month="2025-11") is None
    assert growth_rate(1000, [_month("2025-10", None)], current_month="2025-11") is None
    assert growth_rate(None, [_month("2025-10", 1000)], current_month="2025-11") is None


def test_merge_history_prefers_extracted():
    """Test freshly extracted months win over stored ones."""
    merged = merge_history(
        [_month("2025-10", 1000)],
        [_month("2025-10", 1), _month("2025-09", 900), _month("2025-08", None)],
    )
    assert [(m.month_year, m.monthly_visits) for m in merged] == [("2025-10", 1000), ("2025-09", 900)]


def _snapshot(month_year, visits, bounce=None):
    return TrafficSnapshot(
        domain="example.com",
        month_year=month_year,
        monthly_visits=visits,
        bounce_rate=bounce,
        checked_at=datetime(2025, 11, 20, tzinfo=timezone.utc),
    )


def test_calculate_trends():
    """Test period summaries over the newest snapshots."""
    history = [
        _snapshot("2025-08", 400, 50.0),
        _snapshot("2025-11", 1000, 40.0),
        _snapshot("2025-10", 800),
        _snapshot("2025-09", 600, 60.0),
    ]
    trends = {t.period: t for t in calculate_trends(history)}

    assert trends["1m"].total_visits == 1000
    assert trends["1m"].data_points == 1
    assert trends["3m"].total_visits == 2400
    assert trends["3m"].avg_monthly_visits == 800.0
    assert trends["3m"].avg_bounce_rate == 50.0
    assert trends["6m"].data_points == 4
    assert trends["12m"].total_visits == 2800


def test_calculate_trends_empty():
    """Test no history gives no summaries."""
    assert calculate_trends([]) == []


def test_months_for_period():
    """Test period labels and the 12 month default."""
    assert months_for_period("1m") == 1
    assert months_for_period("6M") == 6
    assert months_for_period("bogus") == 12
    assert months_for_period(None) == 12


def test_growth_with_current_month_in_history():
    """Test the current month's 1196 against last month's 1000."""
    history = [_month("2025-11", 1196), _month("2025-10", 1000)]
    assert growth_rate(1196, history, current_month="2025-11") == 19.6
