"""Turn one rendered bulk-results page into one result per requested domain."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from traffic_bulk.config import config
from traffic_bulk.fetch.browser import NavigationError, load_page
from traffic_bulk.fetch.endpoints import MAX_DOMAINS_PER_QUERY, build_bulk_url
from traffic_bulk.fetch.rate_limit import RateLimiter
from traffic_bulk.parse.extractors.cards import extract_from_cards
from traffic_bulk.parse.extractors.generic import extract_generic
from traffic_bulk.parse.extractors.history import extract_historical_months
from traffic_bulk.parse.extractors.table import extract_from_table
from traffic_bulk.parse.matching import DomainMatcher
from traffic_bulk.parse.models import ExtractionResult, HistoricalMonthData, TrafficRecord, utcnow
from traffic_bulk.parse.page import RenderedPage

logger = logging.getLogger(__name__)

PageLoader = Callable[[str], Awaitable[RenderedPage]]
Strategy = Callable[[RenderedPage, DomainMatcher], list[ExtractionResult]]

# Ordered layout fallbacks; the first non-empty result wins
STRATEGIES: list[Strategy] = [
    extract_from_table,
    extract_from_cards,
    extract_generic,
]

NOT_FOUND_ERROR = "domain not found in results"
NOT_READY_ERROR = "Page did not load results (timeout or structure changed)"
NO_DATA_ERROR = "No data found on page (selectors may need update)"


def run_strategies(page: RenderedPage, matcher: DomainMatcher) -> list[ExtractionResult]:
    """Apply the layout strategies in order until one yields results."""
    for strategy in STRATEGIES:
        try:
            results = strategy(page, matcher)
        except Exception as e:
            logger.warning(f"Strategy {strategy.__name__} failed: {e}")
            continue
        if results:
            logger.info(f"Strategy {strategy.__name__} extracted {len(results)} domain(s)")
            return results
    return []


class TrafficExtractor:
    """
    Extraction engine for one upstream query of at most 10 domains.

    Holds no state between calls. The page loader is injectable so the engine
    can run against canned HTML.
    """

    def __init__(
        self,
        loader: Optional[PageLoader] = None,
        rate_limiter: Optional[RateLimiter] = None,
        history_timeout: float = config.HISTORY_TIMEOUT,
    ):
        self.loader = loader or load_page
        self.rate_limiter = rate_limiter
        self.history_timeout = history_timeout

    async def extract(self, domains: list[str]) -> list[ExtractionResult]:
        """Exactly one result per input domain, in input order."""
        if not domains:
            return []
        if len(domains) > MAX_DOMAINS_PER_QUERY:
            raise ValueError(
                f"at most {MAX_DOMAINS_PER_QUERY} domains per query, got {len(domains)}"
            )

        url = build_bulk_url(domains)
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire(url)

        logger.info(f"Loading {url}")
        try:
            page = await self.loader(url)
        except NavigationError as e:
            logger.error(f"Navigation failed for {len(domains)} domain(s): {e}")
            return [_failed(domain, f"Navigation failed: {e}") for domain in domains]

        matcher = DomainMatcher(domains)
        extracted = run_strategies(page, matcher)
        if not extracted:
            message = NOT_READY_ERROR if not page.ready else NO_DATA_ERROR
            logger.warning(f"No results parsed from {url}: {message}")
            return [_failed(domain, message) for domain in domains]

        checked_at = utcnow()
        by_domain: dict[str, ExtractionResult] = {}
        for result in extracted:
            domain = result.record.domain
            if domain in by_domain:
                continue
            result.record.checked_at = checked_at
            by_domain[domain] = result

        for domain, result in by_domain.items():
            if result.scope_html is not None:
                result.historical_months = await self._enrich(page, result, domain, len(domains))

        missing = [domain for domain in domains if domain not in by_domain]
        if missing:
            logger.warning(f"{len(missing)} domain(s) missing from results: {', '.join(missing)}")
        return [by_domain.get(domain) or _failed(domain, NOT_FOUND_ERROR) for domain in domains]

    async def _enrich(
        self, page: RenderedPage, result: ExtractionResult, domain: str, requested: int
    ) -> list[HistoricalMonthData]:
        """History from the card itself; the whole page only for single-domain queries."""
        months = await self._history(RenderedPage.fragment(result.scope_html, page.url), domain)
        if not months and requested == 1:
            months = await self._history(page, domain)
        return months

    async def _history(self, page: RenderedPage, domain: str) -> list[HistoricalMonthData]:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(extract_historical_months, page, domain),
                timeout=self.history_timeout,
            )
        except asyncio.TimeoutError:
            logger.debug(f"History extraction timed out for {domain}")
            return []


def _failed(domain: str, message: str) -> ExtractionResult:
    return ExtractionResult(record=TrafficRecord.failed(domain, message))
