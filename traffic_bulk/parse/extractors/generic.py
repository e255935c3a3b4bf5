"""Last-resort strategy: search the whole page text around each domain mention."""
import logging
import re

from traffic_bulk.parse.extractors.labels import extract_labelled_metrics, record_from_metrics
from traffic_bulk.parse.matching import DomainMatcher
from traffic_bulk.parse.models import ExtractionResult
from traffic_bulk.parse.numbers import NUMBER_WITH_SUFFIX, parse_number_with_suffix
from traffic_bulk.parse.page import RenderedPage

logger = logging.getLogger(__name__)

CONTEXT_CHARS = 500

# "576K visits" / "1.2M monthly" when no label precedes the figure
_TRAILING_LABEL_RE = re.compile(
    rf"(?<![\d.,+\-])({NUMBER_WITH_SUFFIX})\s*(?:visits|monthly|traffic)\b", re.IGNORECASE
)


def context_window(text: str, start: int, end: int, size: int = CONTEXT_CHARS) -> str:
    return text[max(0, start - size) : min(len(text), end + size)]


def extract_generic(page: RenderedPage, matcher: DomainMatcher) -> list[ExtractionResult]:
    """One result per requested domain with a plausible metric near its first mention."""
    text = page.text
    if not text:
        return []

    results: list[ExtractionResult] = []
    for domain in matcher.domains:
        match = matcher.locate(domain, text)
        if match is None:
            continue
        window = context_window(text, match.start(), match.end())
        metrics = extract_labelled_metrics(window)
        if "monthly_visits" not in metrics:
            trailing = _TRAILING_LABEL_RE.search(window)
            if trailing:
                visits = parse_number_with_suffix(trailing.group(1))
                if visits:
                    metrics["monthly_visits"] = visits
        if not metrics:
            continue
        results.append(ExtractionResult(record=record_from_metrics(domain, metrics)))

    logger.debug(f"Generic strategy: {len(results)}/{len(matcher)} domains")
    return results
