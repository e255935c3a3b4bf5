"""
Tests for the table layout strategy.
"""
from traffic_bulk.parse.extractors.table import extract_from_table, infer_columns, parse_row
from traffic_bulk.parse.matching import DomainMatcher
from traffic_bulk.parse.page import RenderedPage


def _page(html: str) -> RenderedPage:
    return RenderedPage(url="https://traffic.cv/bulk?domains=x", html=html)


def _by_domain(results):
    return {r.record.domain: r.record for r in results}


def test_extract_default_column_order():
    """Test rows in the usual Website | Visits | Duration | Pages | Bounce order."""
    html = """
    <table>
      <thead>
        <tr><th>Website</th><th>Visits</th><th>Avg. Duration</th><th>Pages/Visit</th><th>Bounce Rate</th></tr>
      </thead>
      <tbody>
        <tr><td>example.com</td><td>3.72K</td><td>00:14:24</td><td>3.13</td><td>31.93%</td></tr>
        <tr><td>www.other.com</td><td>82.28B</td><td>00:00:16</td><td>1.68</td><td>46.38%</td></tr>
      </tbody>
    </table>
    """
    results = extract_from_table(_page(html), DomainMatcher(["example.com", "other.com"]))
    records = _by_domain(results)

    assert set(records) == {"example.com", "other.com"}
    assert records["example.com"].monthly_visits == 3720
    assert records["example.com"].avg_session_duration == "00:14:24"
    assert records["example.com"].avg_session_duration_seconds == 864
    assert records["example.com"].pages_per_visit == 3.13
    assert records["example.com"].bounce_rate == 31.93
    assert records["other.com"].monthly_visits == 82280000000
    assert records["other.com"].avg_session_duration_seconds == 16


def test_extract_reordered_header():
    """Test header labels drive the column mapping."""
    html = """
    <table>
      <thead>
        <tr><th>Website</th><th>Bounce Rate</th><th>Pages/Visit</th><th>Visits</th><th>Avg. Duration</th></tr>
      </thead>
      <tbody>
        <tr><td>example.com</td><td>31.93%</td><td>3.13</td><td>3.72K</td><td>00:14:24</td></tr>
      </tbody>
    </table>
    """
    results = extract_from_table(_page(html), DomainMatcher(["example.com"]))

    assert len(results) == 1
    record = results[0].record
    assert record.monthly_visits == 3720
    assert record.bounce_rate == 31.93
    assert record.pages_per_visit == 3.13
    assert record.avg_session_duration_seconds == 864


def test_header_row_without_thead_drives_columns():
    """Test a reordered header row placed in the body still maps the columns."""
    html = """
    <table>
      <tr><th>Website</th><th>Pages/Visit</th><th>Visits</th><th>Avg. Duration</th><th>Bounce Rate</th></tr>
      <tr><td>example.com</td><td>3.13</td><td>3.72K</td><td>00:14:24</td><td>31.93%</td></tr>
    </table>
    """
    results = extract_from_table(_page(html), DomainMatcher(["example.com"]))

    assert len(results) == 1
    record = results[0].record
    assert record.monthly_visits == 3720
    assert record.pages_per_visit == 3.13
    assert record.avg_session_duration_seconds == 864
    assert record.bounce_rate == 31.93


def test_first_row_is_data_when_it_names_a_domain():
    """Test a table without any header row keeps the default column order."""
    html = """
    <table>
      <tr><td>example.com</td><td>3.72K</td><td>00:14:24</td><td>3.13</td><td>31.93%</td></tr>
    </table>
    """
    record = extract_from_table(_page(html), DomainMatcher(["example.com"]))[0].record

    assert record.monthly_visits == 3720
    assert record.avg_session_duration_seconds == 864
    assert record.pages_per_visit == 3.13


def test_out_of_range_bounce_rate_is_dropped():
    """Test a 150% bounce rate fails validation but other metrics survive."""
    html = """
    <table><tbody>
      <tr><td>example.com</td><td>3.72K</td><td>00:14:24</td><td>3.13</td><td>150%</td></tr>
    </tbody></table>
    """
    results = extract_from_table(_page(html), DomainMatcher(["example.com"]))

    record = results[0].record
    assert record.bounce_rate is None
    assert record.monthly_visits == 3720
    assert record.pages_per_visit == 3.13


def test_fallback_finds_metrics_by_shape():
    """Test metrics in unexpected columns are located by their shape."""
    cells = ["example.com", "00:14:24", "3.13", "31.93%", "2,500"]
    metrics = parse_row(cells, {"visits": 1, "duration": 2, "pages": 3, "bounce": 4})

    assert metrics == {
        "avg_session_duration_seconds": 864,
        "bounce_rate": 31.93,
        "monthly_visits": 2500,
        "pages_per_visit": 3.13,
    }


def test_small_number_outside_visits_column_is_not_visits():
    """Test a bare small number is not promoted to visits."""
    cells = ["example.com", "-", "00:14:24", "3.13", "31.93%", "42"]
    metrics = parse_row(cells, {"visits": 1, "duration": 2, "pages": 3, "bounce": 4})

    assert "monthly_visits" not in metrics
    assert metrics["avg_session_duration_seconds"] == 864


def test_rows_for_unrequested_domains_are_ignored():
    """Test only requested domains produce results, each once."""
    html = """
    <table><tbody>
      <tr><td>example.com</td><td>3.72K</td><td>00:14:24</td><td>3.13</td><td>31.93%</td></tr>
      <tr><td>stranger.net</td><td>1M</td><td>00:01:00</td><td>2.0</td><td>50%</td></tr>
      <tr><td>Example.com</td><td>9K</td><td>00:01:00</td><td>2.0</td><td>50%</td></tr>
    </tbody></table>
    """
    results = extract_from_table(_page(html), DomainMatcher(["example.com"]))

    assert [r.record.domain for r in results] == ["example.com"]
    assert results[0].record.monthly_visits == 3720


def test_row_domain_from_data_attribute_and_link():
    """Test the domain can come from data-domain or the first cell's link."""
    html = """
    <table><tbody>
      <tr data-domain="example.com"><td>Example</td><td>3.72K</td></tr>
      <tr><td><a href="https://www.other.com/">Other site</a></td><td>1.5M</td></tr>
    </tbody></table>
    """
    results = extract_from_table(_page(html), DomainMatcher(["example.com", "other.com"]))
    records = _by_domain(results)

    assert records["example.com"].monthly_visits == 3720
    assert records["other.com"].monthly_visits == 1500000


def test_no_table_returns_empty():
    """Test pages without rows yield nothing."""
    assert extract_from_table(_page("<div>nothing here</div>"), DomainMatcher(["example.com"])) == []


def test_infer_columns():
    """Test header label mapping."""
    columns = infer_columns(["Website", "Visits", "Avg. Duration", "Pages / Visit", "Bounce Rate"])
    assert columns == {"visits": 1, "duration": 2, "pages": 3, "bounce": 4}
    assert infer_columns(["Website", "Rank"]) == {}


def test_duration_before_visits_header():
    """Test a header with duration ahead of visits remaps both columns."""
    html = """
    <table>
      <thead><tr><th>Website</th><th>Avg. Duration</th><th>Visits</th><th>Pages/Visit</th><th>Bounce Rate</th></tr></thead>
      <tbody><tr><td>example.com</td><td>00:14:24</td><td>3.72K</td><td>3.13</td><td>31.93%</td></tr></tbody>
    </table>
    """
    assert infer_columns(["Website", "Avg. Duration", "Visits", "Pages/Visit", "Bounce Rate"]) == {
        "duration": 1,
        "visits": 2,
        "pages": 3,
        "bounce": 4,
    }
    record = extract_from_table(_page(html), DomainMatcher(["example.com"]))[0].record
    assert record.monthly_visits == 3720
    assert record.avg_session_duration_seconds == 864
