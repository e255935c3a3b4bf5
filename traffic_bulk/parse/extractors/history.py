"""Mine month-by-month visit figures from the "visits over time" chart."""
import logging
import re
from typing import Callable, Optional

from traffic_bulk.parse.models import HistoricalMonthData
from traffic_bulk.parse.numbers import NUMBER_WITH_SUFFIX, parse_number_with_suffix
from traffic_bulk.parse.page import RenderedPage, node_text

logger = logging.getLogger(__name__)

MAX_MONTHS = 3

CHART_SELECTORS = '[class*="chart"], [class*="graph"], [class*="visits-over-time"]'
DATA_ATTR_SELECTORS = "[data-month], [data-date], [data-visits]"
ROW_SELECTORS = 'table tbody tr, [class*="history"] tr, [class*="history"] li, [class*="month"]'

_MONTH_RE = re.compile(r"(\d{4})[/-](\d{2})")
_SLASH_MONTH_RE = re.compile(r"(\d{4})/(\d{2})")
# A count that is not the start of another date or decimal
_COUNT = rf"({NUMBER_WITH_SUFFIX})(?![\d/]|[.,]\d)"
_COUNT_RE = re.compile(rf"(?<![\d.,/])" + _COUNT)

# Tooltip shapes, tightest first
TOOLTIP_PATTERNS = (
    re.compile(rf"(\d{{4}})/(\d{{2}})\s+visits?[:\s]+{_COUNT}", re.IGNORECASE),
    re.compile(rf"(\d{{4}})/(\d{{2}})[:\s]*{_COUNT}\s*visits?", re.IGNORECASE),
    re.compile(rf"(\d{{4}})/(\d{{2}})[^\d]*{_COUNT}"),
)
_LOOSE_PATTERN = TOOLTIP_PATTERNS[-1]

MonthVisits = tuple[str, int]


def _month_key(year: str, month: str) -> Optional[str]:
    if not 1 <= int(month) <= 12:
        return None
    return f"{year}-{month}"


def _visits(raw: Optional[str]) -> Optional[int]:
    value = parse_number_with_suffix(raw)
    if value is None or value <= 0:
        return None
    return value


def _scan(pattern: re.Pattern, text: str) -> list[MonthVisits]:
    found = []
    for match in pattern.finditer(text):
        key = _month_key(match.group(1), match.group(2))
        visits = _visits(match.group(3))
        if key and visits:
            found.append((key, visits))
    return found


def _count_after(text: str, start: int) -> Optional[int]:
    match = _COUNT_RE.search(text, start)
    return _visits(match.group(1)) if match else None


def from_svg_text(page: RenderedPage) -> list[MonthVisits]:
    """Chart axis/tooltip <text> nodes: a month label with its value in the same or next node."""
    texts = [node_text(node) for node in page.tree.css("svg text")]
    found = []
    for index, text in enumerate(texts):
        month = _SLASH_MONTH_RE.search(text)
        if not month:
            continue
        key = _month_key(month.group(1), month.group(2))
        if not key:
            continue
        visits = _count_after(text, month.end())
        if visits is None and index + 1 < len(texts) and not _SLASH_MONTH_RE.search(texts[index + 1]):
            visits = _count_after(texts[index + 1], 0)
        if visits:
            found.append((key, visits))
    return found


def from_tooltip_text(page: RenderedPage) -> list[MonthVisits]:
    found = []
    for pattern in TOOLTIP_PATTERNS:
        found.extend(_scan(pattern, page.text))
    return found


def from_chart_elements(page: RenderedPage) -> list[MonthVisits]:
    found = []
    for node in page.tree.css(CHART_SELECTORS):
        found.extend(_scan(_LOOSE_PATTERN, node_text(node)))
    return found


def from_data_attributes(page: RenderedPage) -> list[MonthVisits]:
    found = []
    for node in page.tree.css(DATA_ATTR_SELECTORS):
        attrs = node.attributes
        month_attr = attrs.get("data-month") or attrs.get("data-date")
        visits_attr = attrs.get("data-visits") or attrs.get("data-value")
        if not month_attr or not visits_attr:
            continue
        month = _MONTH_RE.search(month_attr)
        if not month:
            continue
        key = _month_key(month.group(1), month.group(2))
        visits = _visits(visits_attr)
        if key and visits:
            found.append((key, visits))
    return found


def from_rows(page: RenderedPage) -> list[MonthVisits]:
    found = []
    for node in page.tree.css(ROW_SELECTORS):
        text = node_text(node)
        month = _MONTH_RE.search(text)
        if not month:
            continue
        key = _month_key(month.group(1), month.group(2))
        visits = _count_after(text, month.end())
        if key and visits:
            found.append((key, visits))
    return found


_STRATEGIES: list[Callable[[RenderedPage], list[MonthVisits]]] = [
    from_svg_text,
    from_tooltip_text,
    from_chart_elements,
    from_data_attributes,
    from_rows,
]


def merge_months(found: list[MonthVisits], limit: int = MAX_MONTHS) -> list[HistoricalMonthData]:
    """First value per month wins; newest first, truncated."""
    merged: dict[str, int] = {}
    for month_year, visits in found:
        merged.setdefault(month_year, visits)
    ordered = sorted(merged.items(), key=lambda item: item[0], reverse=True)[:limit]
    return [HistoricalMonthData(month_year=m, monthly_visits=v) for m, v in ordered]


def extract_historical_months(page: RenderedPage, domain: str) -> list[HistoricalMonthData]:
    """
    Extract up to three months of visits, most recent first.

    A failing strategy is logged and skipped; the others still contribute.
    History is an enrichment and must never break the main extraction.
    """
    found: list[MonthVisits] = []
    for strategy in _STRATEGIES:
        try:
            found.extend(strategy(page))
        except Exception as e:
            logger.warning(f"History strategy {strategy.__name__} failed for {domain}: {e}")
    months = merge_months(found)

    if months:
        summary = ", ".join(f"{m.month_year}={m.monthly_visits}" for m in months)
        logger.debug(f"Extracted {len(months)} historical months for {domain}: {summary}")
    else:
        logger.debug(f"No historical months extracted for {domain}")
    return months
