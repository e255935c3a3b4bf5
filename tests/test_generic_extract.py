"""
Tests for the whole-page text strategy and domain matching.
"""
from traffic_bulk.parse.extractors.generic import extract_generic
from traffic_bulk.parse.matching import DomainMatcher
from traffic_bulk.parse.page import RenderedPage


def _page(html: str) -> RenderedPage:
    return RenderedPage(url="https://traffic.cv/bulk?domains=x", html=html)


def test_generic_reads_labels_near_the_domain():
    """Test labelled metrics around a domain mention."""
    html = "<div><p>Report for example.com: Total Visits 1.2M, Bounce Rate 45.5%</p></div>"
    results = extract_generic(_page(html), DomainMatcher(["example.com", "missing.com"]))

    assert len(results) == 1
    record = results[0].record
    assert record.domain == "example.com"
    assert record.monthly_visits == 1200000
    assert record.bounce_rate == 45.5


def test_generic_trailing_visits_label():
    """Test "576K visits" is accepted when no label precedes the number."""
    html = "<p>example.com gets 576K visits each month</p>"
    results = extract_generic(_page(html), DomainMatcher(["example.com"]))

    assert results[0].record.monthly_visits == 576000


def test_generic_ignores_scripts():
    """Test text inside script tags is not treated as page content."""
    html = "<body><script>var s = 'example.com Total Visits 9M';</script><p>nothing</p></body>"
    assert extract_generic(_page(html), DomainMatcher(["example.com"])) == []


def test_matcher_respects_token_boundaries():
    """Test a domain is not found inside a longer hostname."""
    matcher = DomainMatcher(["example.com"])

    assert matcher.find_in_text("visit notexample.com today") == []
    assert matcher.find_in_text("visit example.com.au today") == []
    assert matcher.find_in_text("visit WWW.Example.com today") == ["example.com"]
    assert matcher.find_in_text("example.com, then more") == ["example.com"]


def test_matcher_match_normalizes_candidates():
    """Test URLs and www forms map back to the requested domain."""
    matcher = DomainMatcher(["example.com", "other.com"])

    assert matcher.match("https://www.example.com/page") == "example.com"
    assert matcher.match("OTHER.COM") == "other.com"
    assert matcher.match("third.com") is None
    assert matcher.match(None) is None
    assert len(matcher) == 2
    assert "other.com" in matcher
