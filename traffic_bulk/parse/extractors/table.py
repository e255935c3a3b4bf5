"""Table layout: Website | Visits | Avg. Duration | Pages/Visit | Bounce Rate | ..."""
import logging
import re
from typing import Any, Optional

from selectolax.parser import Node

from traffic_bulk.parse.extractors.labels import record_from_metrics
from traffic_bulk.parse.matching import DomainMatcher
from traffic_bulk.parse.models import ExtractionResult
from traffic_bulk.parse.numbers import (
    DURATION_HMS,
    NUMBER_WITH_SUFFIX,
    PERCENTAGE,
    parse_decimal,
    parse_duration_to_seconds,
    parse_number_with_suffix,
    parse_percentage,
    valid_bounce_rate,
    valid_pages_per_visit,
)
from traffic_bulk.parse.page import RenderedPage, node_text

logger = logging.getLogger(__name__)

ROW_SELECTORS = ["table tbody tr", "table tr", "[role=row]", "tr[data-domain]"]
HEADER_SELECTORS = ["table thead th", "[role=columnheader]"]
CELL_TAGS = ("td", "th")
CELL_ROLES = ("cell", "gridcell", "rowheader", "columnheader")

# Website column is 0
DEFAULT_COLUMNS = {"visits": 1, "duration": 2, "pages": 3, "bounce": 4}

_VISITS_CELL_RE = re.compile(rf"^({NUMBER_WITH_SUFFIX})(?![\d.,:/%])")
_VISITS_STRICT_RE = re.compile(rf"^({NUMBER_WITH_SUFFIX})$")
_DURATION_RE = re.compile(DURATION_HMS)
_PERCENT_RE = re.compile(PERCENTAGE)


def infer_columns(headers: list[str]) -> dict[str, int]:
    """Map metric name -> column index from header labels."""
    columns: dict[str, int] = {}
    for index, header in enumerate(headers):
        label = header.lower()
        if "visit" in label and "page" not in label:
            columns.setdefault("visits", index)
        elif "duration" in label or "avg" in label:
            columns.setdefault("duration", index)
        elif "page" in label:
            columns.setdefault("pages", index)
        elif "bounce" in label:
            columns.setdefault("bounce", index)
    return columns


def _row_cells(row: Node) -> list[Node]:
    cells = []
    for child in row.iter():
        if child.tag in CELL_TAGS or child.attributes.get("role") in CELL_ROLES:
            cells.append(child)
    return cells


def _header_labels(page: RenderedPage) -> list[str]:
    for selector in HEADER_SELECTORS:
        nodes = page.tree.css(selector)
        if nodes:
            return [node_text(node) for node in nodes]
    return []


def _first_row_labels(rows: list[Node], matcher: DomainMatcher) -> list[str]:
    """Header row without <thead>: the parser moves it into <tbody> as the first row."""
    for row in rows:
        cells = _row_cells(row)
        if not cells:
            continue
        if _row_domain(row, cells[0], matcher):
            return []
        return [node_text(cell) for cell in cells]
    return []


def _parse_visits(text: str) -> Optional[int]:
    match = _VISITS_CELL_RE.match(text.strip())
    if not match:
        return None
    return parse_number_with_suffix(match.group(1))


def _parse_duration(text: str) -> Optional[int]:
    match = _DURATION_RE.search(text)
    if not match:
        return None
    return parse_duration_to_seconds(match.group(0))


def _parse_pages(text: str) -> Optional[float]:
    value = parse_decimal(text)
    return value if valid_pages_per_visit(value) else None


def _parse_bounce(text: str) -> Optional[float]:
    match = _PERCENT_RE.search(text)
    if not match:
        return None
    value = parse_percentage(match.group(0))
    return value if valid_bounce_rate(value) else None


def _parse_visits_loose(text: str) -> Optional[int]:
    """Visits found outside the inferred column need a suffix or a large value."""
    match = _VISITS_STRICT_RE.match(text.strip())
    if not match:
        return None
    raw = match.group(1)
    value = parse_number_with_suffix(raw)
    if value is None:
        return None
    has_suffix = raw.strip()[-1:].upper() in ("K", "M", "B")
    if not has_suffix and value <= 1000:
        return None
    return value if value > 100 else None


PARSERS = {
    "visits": _parse_visits,
    "duration": _parse_duration,
    "pages": _parse_pages,
    "bounce": _parse_bounce,
}

# Distinctive shapes first so a percentage cell is never mistaken for a count
FALLBACK_ORDER = [
    ("duration", _parse_duration),
    ("bounce", _parse_bounce),
    ("visits", _parse_visits_loose),
    ("pages", _parse_pages),
]

METRIC_KEYS = {
    "visits": "monthly_visits",
    "duration": "avg_session_duration_seconds",
    "pages": "pages_per_visit",
    "bounce": "bounce_rate",
}


def _row_domain(row: Node, first_cell: Node, matcher: DomainMatcher) -> Optional[str]:
    candidates = [row.attributes.get("data-domain"), node_text(first_cell)]
    anchor = first_cell.css_first("a[href]")
    if anchor is not None:
        candidates.append(anchor.attributes.get("href"))
    for candidate in candidates:
        domain = matcher.match(candidate)
        if domain:
            return domain
    found = matcher.find_in_text(node_text(first_cell))
    return found[0] if found else None


def parse_row(cells: list[str], columns: dict[str, int]) -> dict[str, Any]:
    """
    Parse one row's cell texts into metric values.

    Cells at the inferred positions are validated first; anything missing is
    then searched for by shape among the cells nobody claimed.
    """
    values: dict[str, Any] = {}
    used = {0}
    for name, index in columns.items():
        if index >= len(cells):
            continue
        value = PARSERS[name](cells[index])
        if value is not None:
            values[name] = value
            used.add(index)

    for name, parser in FALLBACK_ORDER:
        if name in values:
            continue
        for index, text in enumerate(cells):
            if index in used:
                continue
            value = parser(text)
            if value is not None:
                values[name] = value
                used.add(index)
                break

    return {METRIC_KEYS[name]: value for name, value in values.items()}


def extract_from_table(page: RenderedPage, matcher: DomainMatcher) -> list[ExtractionResult]:
    """Extract one result per requested domain found in a results table."""
    rows: list[Node] = []
    for selector in ROW_SELECTORS:
        rows = page.tree.css(selector)
        if rows:
            break
    if not rows:
        return []

    headers = _header_labels(page) or _first_row_labels(rows, matcher)
    columns = infer_columns(headers) or dict(DEFAULT_COLUMNS)
    logger.debug(f"Table strategy: {len(rows)} rows, columns={columns}")

    results: list[ExtractionResult] = []
    seen: set[str] = set()
    for row in rows:
        cells = _row_cells(row)
        if len(cells) < 2:
            continue
        domain = _row_domain(row, cells[0], matcher)
        if not domain or domain in seen:
            continue
        metrics = parse_row([node_text(cell) for cell in cells], columns)
        if not metrics:
            continue
        seen.add(domain)
        results.append(ExtractionResult(record=record_from_metrics(domain, metrics)))
    return results
