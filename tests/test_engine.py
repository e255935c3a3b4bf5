"""
Tests for the extraction engine using canned pages instead of a browser.
"""
import asyncio
import time

import pytest

from traffic_bulk.fetch.browser import NavigationError
from traffic_bulk.fetch.endpoints import build_bulk_url
from traffic_bulk.parse.engine import (
    NO_DATA_ERROR,
    NOT_FOUND_ERROR,
    NOT_READY_ERROR,
    TrafficExtractor,
)
from traffic_bulk.parse.page import RenderedPage

TABLE_HTML = """
<table>
  <thead><tr><th>Website</th><th>Visits</th><th>Avg. Duration</th><th>Pages/Visit</th><th>Bounce Rate</th></tr></thead>
  <tbody>
    <tr><td>example.com</td><td>3.72K</td><td>00:14:24</td><td>3.13</td><td>31.93%</td></tr>
  </tbody>
</table>
"""

CARD_WITH_CHART = """
<div class="card">
  <h3>example.com</h3>
  <p>Total Visits 3.72K</p>
  <p>Bounce Rate 31.93%</p>
  <svg><text>2025/09</text><text>500K</text><text>2025/10</text><text>550K</text></svg>
</div>
"""

PLAIN_CARDS = """
<div class="card"><h3>example.com</h3><p>Total Visits 3.72K</p></div>
<div class="card"><h3>other.com</h3><p>Total Visits 1.2M</p></div>
<div class="visits-over-time">2025/09 visits: 500K</div>
"""


class FakeLoader:
    """Serves one canned page and records requested URLs."""

    def __init__(self, html="", ready=True, error=None):
        self.html = html
        self.ready = ready
        self.error = error
        self.urls = []

    async def __call__(self, url):
        self.urls.append(url)
        if self.error:
            raise self.error
        return RenderedPage(url=url, html=self.html, ready=self.ready)


def _extract(loader, domains):
    return asyncio.run(TrafficExtractor(loader=loader).extract(domains))


def test_one_result_per_domain_in_input_order():
    """Test a domain absent from the page gets a not-found error."""
    loader = FakeLoader(TABLE_HTML)
    results = _extract(loader, ["missing.com", "example.com"])

    assert [r.record.domain for r in results] == ["missing.com", "example.com"]
    assert results[0].record.error == NOT_FOUND_ERROR
    assert results[1].record.error is None
    assert results[1].record.monthly_visits == 3720
    assert results[1].record.checked_at is not None
    assert loader.urls == [build_bulk_url(["missing.com", "example.com"])]


def test_more_than_ten_domains_rejected():
    """Test the upstream limit is enforced before any page load."""
    loader = FakeLoader(TABLE_HTML)
    with pytest.raises(ValueError):
        _extract(loader, [f"site{i}.com" for i in range(11)])
    assert loader.urls == []


def test_empty_input():
    """Test no domains means no page load."""
    loader = FakeLoader(TABLE_HTML)
    assert _extract(loader, []) == []
    assert loader.urls == []


def test_page_not_ready():
    """Test an unready page with nothing parsed reports a load failure."""
    results = _extract(FakeLoader("<div>Loading...</div>", ready=False), ["example.com", "other.com"])
    assert [r.record.error for r in results] == [NOT_READY_ERROR, NOT_READY_ERROR]


def test_page_ready_but_no_data():
    """Test a loaded page with nothing parsed reports a selector problem."""
    results = _extract(FakeLoader("<div>Unexpected layout</div>"), ["example.com"])
    assert results[0].record.error == NO_DATA_ERROR


def test_navigation_failure():
    """Test a navigation error fails every domain in the group."""
    loader = FakeLoader(error=NavigationError("net::ERR_NAME_NOT_RESOLVED"))
    results = _extract(loader, ["example.com", "other.com"])

    assert [r.record.error for r in results] == [
        "Navigation failed: net::ERR_NAME_NOT_RESOLVED",
        "Navigation failed: net::ERR_NAME_NOT_RESOLVED",
    ]


def test_history_from_the_card():
    """Test chart months inside a card are attached to that card's domain."""
    results = _extract(FakeLoader(CARD_WITH_CHART), ["example.com"])

    record = results[0].record
    assert record.monthly_visits == 3720
    assert [(m.month_year, m.monthly_visits) for m in results[0].historical_months] == [
        ("2025-10", 550000),
        ("2025-09", 500000),
    ]


def test_page_wide_history_only_for_single_domain():
    """Test a chart outside the cards is used only when one domain was requested."""
    single = _extract(FakeLoader(PLAIN_CARDS), ["example.com"])
    several = _extract(FakeLoader(PLAIN_CARDS), ["example.com", "other.com"])

    assert [m.month_year for m in single[0].historical_months] == ["2025-09"]
    assert all(r.historical_months == [] for r in several)
    assert several[1].record.monthly_visits == 1200000


def test_slow_history_is_dropped_not_fatal(monkeypatch):
    """Test history that overruns its timeout yields no months but keeps the record."""

    def slow_history(page, domain):
        time.sleep(0.3)
        return []

    monkeypatch.setattr("traffic_bulk.parse.engine.extract_historical_months", slow_history)
    extractor = TrafficExtractor(loader=FakeLoader(CARD_WITH_CHART), history_timeout=0.05)

    results = asyncio.run(extractor.extract(["example.com"]))

    assert len(results) == 1
    assert results[0].record.error is None
    assert results[0].record.monthly_visits == 3720
    assert results[0].historical_months == []
