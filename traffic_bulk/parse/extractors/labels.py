"""Label-anchored metric patterns shared by the card and generic strategies."""
import re
from typing import Any, Optional

from traffic_bulk.parse.models import TrafficRecord
from traffic_bulk.parse.numbers import (
    DURATION_HMS,
    NUMBER_WITH_SUFFIX,
    format_duration,
    parse_decimal,
    parse_duration_to_seconds,
    parse_number_with_suffix,
    parse_percentage,
    valid_bounce_rate,
    valid_pages_per_visit,
)

# Ordered, tightest first. Every pattern captures the value in group 1.
VISITS_PATTERNS = (
    re.compile(rf"Total\s*Visits[:\s]*({NUMBER_WITH_SUFFIX})", re.IGNORECASE),
    re.compile(rf"Monthly\s*Visits[:\s]*({NUMBER_WITH_SUFFIX})", re.IGNORECASE),
)
DURATION_PATTERNS = (
    re.compile(rf"Avg\.?\s*(?:Session\s*)?Duration[:\s]*({DURATION_HMS})", re.IGNORECASE),
    re.compile(rf"Duration[:\s]*({DURATION_HMS})", re.IGNORECASE),
    re.compile(rf"(?<![\d:])({DURATION_HMS})(?![\d:])"),
)
PAGES_PATTERNS = (
    re.compile(r"Pages\s*per\s*Visit[:\s]*(\d+(?:\.\d+)?)", re.IGNORECASE),
    re.compile(r"Pages\s*/\s*Visit[:\s]*(\d+(?:\.\d+)?)", re.IGNORECASE),
)
BOUNCE_PATTERNS = (
    re.compile(r"Bounce\s*Rate[:\s]*(\d+(?:\.\d+)?)\s*%", re.IGNORECASE),
)

# Label -> how many characters after it to scan when the strict pattern misses
VISITS_WINDOW = ("total visits", 50)
PAGES_WINDOW = ("pages per visit", 20)
PAGES_SHORT_WINDOW = ("pages/visit", 20)
BOUNCE_WINDOW = ("bounce rate", 40)

# A standalone count: not part of a percentage, a signed growth figure or a decimal
_LOOSE_NUMBER_RE = re.compile(rf"(?<![\d.,+\-])({NUMBER_WITH_SUFFIX})(?![\d.,]|\s*%)")
_LOOSE_DECIMAL_RE = re.compile(r"(?<![\d.])(\d+\.\d+|\d+)(?![\d.%])")
_LOOSE_PERCENT_RE = re.compile(r"(?<![\d.])(\d+(?:\.\d+)?)\s*%")


def _window_after(text: str, label: str, size: int) -> Optional[str]:
    index = text.lower().find(label)
    if index == -1:
        return None
    start = index + len(label)
    return text[start : start + size]


def find_visits(text: str) -> Optional[int]:
    """Monthly visits next to a "Total Visits" label."""
    for pattern in VISITS_PATTERNS:
        for match in pattern.finditer(text):
            value = parse_number_with_suffix(match.group(1))
            if value is not None and value > 0:
                return value

    label, size = VISITS_WINDOW
    window = _window_after(text, label, size)
    if window:
        for match in _LOOSE_NUMBER_RE.finditer(window):
            value = parse_number_with_suffix(match.group(1))
            if value is not None and value > 0:
                return value
    return None


def find_duration(text: str) -> Optional[int]:
    """Average session duration in seconds from an HH:MM:SS literal."""
    for pattern in DURATION_PATTERNS:
        for match in pattern.finditer(text):
            seconds = parse_duration_to_seconds(match.group(1))
            if seconds is not None:
                return seconds
    return None


def find_pages_per_visit(text: str) -> Optional[float]:
    for pattern in PAGES_PATTERNS:
        for match in pattern.finditer(text):
            value = parse_decimal(match.group(1))
            if valid_pages_per_visit(value):
                return value

    for label, size in (PAGES_WINDOW, PAGES_SHORT_WINDOW):
        window = _window_after(text, label, size)
        if not window:
            continue
        for match in _LOOSE_DECIMAL_RE.finditer(window):
            value = parse_decimal(match.group(1))
            if valid_pages_per_visit(value):
                return value
    return None


def find_bounce_rate(text: str) -> Optional[float]:
    for pattern in BOUNCE_PATTERNS:
        for match in pattern.finditer(text):
            value = parse_percentage(match.group(1))
            if valid_bounce_rate(value):
                return value

    label, size = BOUNCE_WINDOW
    window = _window_after(text, label, size)
    if window:
        for match in _LOOSE_PERCENT_RE.finditer(window):
            value = parse_percentage(match.group(1))
            if valid_bounce_rate(value):
                return value
    return None


def extract_labelled_metrics(text: str) -> dict[str, Any]:
    """
    Pull every labelled metric out of a block of text.

    Values failing their sanity bounds are skipped and the search moves on,
    so a missing key means nothing plausible was found.
    """
    if not text:
        return {}
    metrics: dict[str, Any] = {}
    visits = find_visits(text)
    if visits is not None:
        metrics["monthly_visits"] = visits
    duration = find_duration(text)
    if duration is not None:
        metrics["avg_session_duration_seconds"] = duration
    pages = find_pages_per_visit(text)
    if pages is not None:
        metrics["pages_per_visit"] = pages
    bounce = find_bounce_rate(text)
    if bounce is not None:
        metrics["bounce_rate"] = bounce
    return metrics


def record_from_metrics(domain: str, metrics: dict[str, Any]) -> TrafficRecord:
    """Build a record; the HH:MM:SS string is derived from the seconds."""
    seconds = metrics.get("avg_session_duration_seconds")
    return TrafficRecord(
        domain=domain,
        monthly_visits=metrics.get("monthly_visits"),
        avg_session_duration=format_duration(seconds),
        avg_session_duration_seconds=seconds,
        bounce_rate=metrics.get("bounce_rate"),
        pages_per_visit=metrics.get("pages_per_visit"),
    )
