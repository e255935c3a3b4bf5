"""
Tests for traffic figure parsing utilities.
"""
import pytest

from traffic_bulk.parse.numbers import (
    format_duration,
    parse_decimal,
    parse_duration_to_seconds,
    parse_number_with_suffix,
    parse_percentage,
    valid_bounce_rate,
    valid_pages_per_visit,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("12.3K", 12300),
        ("3.72k", 3720),
        ("4.5M", 4500000),
        ("82.28B", 82280000000),
        ("1,234", 1234),
        ("1,234 Monthly", 1234),
        ("576.19K", 576190),
        ("12 months", 12),
        ("0", 0),
    ],
)
def test_parse_number_with_suffix(raw, expected):
    """Test K/M/B suffixes and thousands separators."""
    assert parse_number_with_suffix(raw) == expected


def test_parse_number_with_suffix_rejects_garbage():
    """Test non-numbers give None."""
    assert parse_number_with_suffix("abc") is None
    assert parse_number_with_suffix("") is None
    assert parse_number_with_suffix(None) is None


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("00:14:24", 864),
        ("14:24", 864),
        ("01:00:00", 3600),
        ("1h 30m", 5400),
        ("2m 15s", 135),
        ("45s", 45),
        ("00:00:00", 0),
    ],
)
def test_parse_duration_to_seconds(raw, expected):
    """Test HH:MM:SS, MM:SS and unit-suffixed durations."""
    assert parse_duration_to_seconds(raw) == expected


def test_parse_duration_unparseable():
    """Test invalid durations give None."""
    assert parse_duration_to_seconds("n/a") is None
    assert parse_duration_to_seconds("") is None
    assert parse_duration_to_seconds(None) is None


def test_parse_percentage_and_decimal():
    """Test percentage and plain decimal parsing."""
    assert parse_percentage("45.2%") == 45.2
    assert parse_percentage("31.93 %") == 31.93
    assert parse_percentage("abc%") is None
    assert parse_decimal("3.13") == 3.13
    assert parse_decimal("3.13%") is None
    assert parse_decimal("00:14:24") is None


def test_format_duration():
    """Test seconds formatted as HH:MM:SS."""
    assert format_duration(864) == "00:14:24"
    assert format_duration(0) == "00:00:00"
    assert format_duration(3725) == "01:02:05"
    assert format_duration(None) is None


def test_sanity_bounds():
    """Test pages per visit and bounce rate ranges."""
    assert valid_pages_per_visit(3.13)
    assert not valid_pages_per_visit(0.05)
    assert not valid_pages_per_visit(25.0)
    assert not valid_pages_per_visit(None)
    assert valid_bounce_rate(0.0)
    assert valid_bounce_rate(100.0)
    assert not valid_bounce_rate(150.0)
