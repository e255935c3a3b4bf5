"""
Card layout: one block per domain with labelled metrics.

- Total Visits: "3.72K" or "82.28B"
- Avg. Duration: "00:14:24" (HH:MM:SS)
- Pages per Visit: "3.13"
- Bounce Rate: "31.93%"
"""
import logging
from typing import Optional

from selectolax.parser import Node

from traffic_bulk.parse.domains import normalize
from traffic_bulk.parse.extractors.labels import extract_labelled_metrics, record_from_metrics
from traffic_bulk.parse.matching import DomainMatcher
from traffic_bulk.parse.models import ExtractionResult
from traffic_bulk.parse.page import RenderedPage, node_text

logger = logging.getLogger(__name__)

CARD_SELECTORS = ['[class*="card"]', "article", '[class*="result"]', "[data-domain]"]
TITLE_SELECTORS = [
    'a[href*="http"]',
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    '[class*="domain"]',
    '[class*="title"]',
    "strong",
    "b",
]


def _match_substring(text: Optional[str], matcher: DomainMatcher) -> Optional[str]:
    """Exact match first, then any requested domain contained in the text."""
    if not text:
        return None
    domain = matcher.match(text)
    if domain:
        return domain
    lowered = text.lower()
    for candidate in matcher.domains:
        if normalize(candidate) in lowered:
            return candidate
    return None


def card_domain(card: Node, card_text: str, matcher: DomainMatcher) -> Optional[str]:
    """Resolve which requested domain a card belongs to."""
    domain = matcher.match(card.attributes.get("data-domain"))
    if domain:
        return domain

    for selector in TITLE_SELECTORS:
        for element in card.css(selector):
            domain = _match_substring(node_text(element), matcher)
            if domain:
                return domain
            if element.tag == "a":
                domain = matcher.match(element.attributes.get("href"))
                if domain:
                    return domain

    found = matcher.find_in_text(card_text)
    return found[0] if found else None


def extract_from_cards(page: RenderedPage, matcher: DomainMatcher) -> list[ExtractionResult]:
    """
    Extract results from card-like blocks.

    Blocks mentioning more than one requested domain are containers and are
    skipped. When nested blocks resolve to the same domain, the one with the
    most metrics wins; ties keep the first in document order.
    """
    cards: list[Node] = []
    for selector in CARD_SELECTORS:
        cards = page.tree.css(selector)
        if cards:
            break
    if not cards:
        return []

    best: dict[str, tuple[int, ExtractionResult]] = {}
    for card in cards:
        text = node_text(card)
        if not text:
            continue
        if len(matcher.find_in_text(text)) > 1:
            continue
        domain = card_domain(card, text, matcher)
        if not domain:
            continue
        metrics = extract_labelled_metrics(text)
        if not metrics:
            continue
        current = best.get(domain)
        if current is not None and current[0] >= len(metrics):
            continue
        result = ExtractionResult(
            record=record_from_metrics(domain, metrics),
            scope_html=card.html,
        )
        best[domain] = (len(metrics), result)

    logger.debug(f"Card strategy: {len(cards)} candidates, {len(best)} accepted")
    return [result for _, result in best.values()]
