"""Request pipeline: normalize, serve from cache, scrape the rest, persist, merge."""
import logging
import random
import uuid
from typing import Iterable, Optional, Union

from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_exponential

from traffic_bulk.analysis.growth import growth_rate, merge_history
from traffic_bulk.config import config
from traffic_bulk.fetch.rate_limit import RateLimiter
from traffic_bulk.jobs.batches import BatchOrchestrator, BatchOutcome
from traffic_bulk.jobs.metrics import Metrics
from traffic_bulk.jobs.metrics_exporter import MetricsExporter
from traffic_bulk.parse.domains import dedupe_domains, is_valid_domain, parse_domain_list
from traffic_bulk.parse.engine import TrafficExtractor
from traffic_bulk.parse.models import (
    BatchMetadata,
    ExtractionResult,
    TrafficRecord,
    TrafficResponse,
    TrafficSnapshot,
    utcnow,
)
from traffic_bulk.parse.numbers import format_duration
from traffic_bulk.store.cache import TrafficCache
from traffic_bulk.store.freshness import current_month
from traffic_bulk.store.snapshots import SnapshotStore

logger = logging.getLogger(__name__)

INVALID_DOMAIN_ERROR = "invalid domain format"
STILL_SCRAPING_ERROR = "still scraping"
BACKGROUND_ERROR = "Scraping in background..."
NO_DATA_ERROR = "No data found on page (selectors may need update)"

# Stored months consulted for growth; one more than a year so last year's month is included
GROWTH_HISTORY_MONTHS = 13

MOCK_BASE_VISITS = [10_000, 50_000, 200_000, 1_000_000, 5_000_000]


def _order_key(order: dict[str, int]):
    return lambda record: order.get(record.domain, len(order))


def _has_data(outcome: BatchOutcome) -> bool:
    return any(r.record.error is None and r.record.has_data() for r in outcome.results.values())


class TrafficRunner:
    """Runs bulk traffic lookups against the cache and the upstream."""

    def __init__(
        self,
        store: SnapshotStore,
        extractor: Optional[TrafficExtractor] = None,
        orchestrator: Optional[BatchOrchestrator] = None,
        cache: Optional[TrafficCache] = None,
        exporter: Optional[MetricsExporter] = None,
        max_daily_failures: int = config.MAX_DAILY_FAILURES,
        retry_attempts: int = config.RETRY_ATTEMPTS,
        retry_backoff: float = 1.0,
        dry_run_seed: Optional[int] = 42,
        export_metrics: bool = True,
    ):
        self.store = store
        self.cache = cache or TrafficCache(store)
        if orchestrator is None:
            extractor = extractor or TrafficExtractor(rate_limiter=RateLimiter(config.RATE_PER_DOMAIN))
            orchestrator = BatchOrchestrator(extractor)
        self.orchestrator = orchestrator
        self.max_daily_failures = max_daily_failures
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.dry_run_seed = dry_run_seed
        self.export_metrics = export_metrics
        self.run_id = str(uuid.uuid4())
        self.exporter = exporter or MetricsExporter(self.run_id)

    # Input handling

    @staticmethod
    def prepare(
        raw_domains: Union[str, Iterable[str], None],
    ) -> tuple[list[str], list[TrafficRecord], dict[str, int]]:
        """
        Normalize and deduplicate the caller's domains.

        Returns the valid domains, error records for invalid ones, and each
        normalized domain's position in the input. Raises ValueError when
        nothing usable was supplied.
        """
        if isinstance(raw_domains, str):
            raw_domains = parse_domain_list(raw_domains)
        raw = list(raw_domains or [])
        if not raw:
            raise ValueError("No domains provided")

        entries = dedupe_domains(raw)
        order = {entry.domain: index for index, entry in enumerate(entries)}
        valid = [entry.domain for entry in entries if is_valid_domain(entry.domain)]
        invalid = [
            TrafficRecord.failed(entry.domain, INVALID_DOMAIN_ERROR)
            for entry in entries
            if not is_valid_domain(entry.domain)
        ]
        if not valid:
            raise ValueError("No valid domains provided")
        if invalid:
            logger.warning(f"Skipping {len(invalid)} invalid domain(s): {', '.join(r.domain for r in invalid)}")
        return valid, invalid, order

    # Main entry point

    async def run(
        self,
        raw_domains: Union[str, Iterable[str]],
        dry_run: bool = False,
        bypass_cache: bool = False,
    ) -> TrafficResponse:
        """Look up every domain: cache hits first, then scrape the misses."""
        domains, records, order = self.prepare(raw_domains)
        metrics = Metrics(len(domains))

        logger.info("=" * 60)
        logger.info(f"Bulk lookup {self.run_id}: {len(domains)} domain(s)")
        logger.info(f"Dry run: {dry_run} | Bypass cache: {bypass_cache}")
        logger.info("=" * 60)

        if dry_run:
            records.extend(self._mock_records(domains))
            records.sort(key=_order_key(order))
            return TrafficResponse(
                results=records,
                metadata=BatchMetadata(
                    total_domains=len(order),
                    batches_processed=0,
                    cache_hits=0,
                    cache_misses=len(domains),
                ),
            )

        month = current_month()
        hits = {} if bypass_cache else await self.cache.lookup_batch(domains)
        misses = [domain for domain in domains if domain not in hits]
        metrics.increment("cache_hits", len(hits))
        metrics.increment("cache_misses", len(misses))
        logger.info(f"Cache: {len(hits)} hit(s), {len(misses)} miss(es)")

        for domain, snapshot in hits.items():
            records.append(await self._record_from_snapshot(snapshot, month))

        to_scrape = misses
        if not bypass_cache:
            to_scrape = []
            for domain in misses:
                gated = await self._gated_record(domain)
                if gated is not None:
                    records.append(gated)
                    metrics.increment("skipped")
                else:
                    to_scrape.append(domain)

        outcome = await self.orchestrator.run(to_scrape)
        metrics.increment("groups", outcome.groups)
        records.extend(await self._persist(outcome, month, metrics))

        records.sort(key=_order_key(order))
        response = TrafficResponse(
            results=records,
            metadata=BatchMetadata(
                total_domains=len(order),
                batches_processed=outcome.groups,
                cache_hits=len(hits),
                cache_misses=len(misses),
                errors=outcome.errors,
            ),
        )
        await self._log_usage(response)
        await self._final_report(metrics, outcome.errors)
        return response

    async def serve_cached(self, raw_domains: Union[str, Iterable[str]]) -> tuple[TrafficResponse, list[str]]:
        """
        Answer from cache only, with placeholders for the misses.

        Returns the response and the domains that still need scraping, so the
        caller can scrape them in the background and poll afterwards.
        """
        domains, records, order = self.prepare(raw_domains)
        month = current_month()
        hits = await self.cache.lookup_batch(domains)
        misses = [domain for domain in domains if domain not in hits]
        for snapshot in hits.values():
            records.append(await self._record_from_snapshot(snapshot, month))
        records.extend(TrafficRecord.failed(domain, BACKGROUND_ERROR) for domain in misses)
        records.sort(key=_order_key(order))
        logger.info(f"Serving {len(hits)} cached result(s), {len(misses)} domain(s) left for background scraping")
        response = TrafficResponse(
            results=records,
            metadata=BatchMetadata(
                total_domains=len(order),
                batches_processed=0,
                cache_hits=len(hits),
                cache_misses=len(misses),
                background_scraping=bool(misses),
            ),
        )
        return response, misses

    async def poll(self, raw_domains: Union[str, Iterable[str]]) -> TrafficResponse:
        """
        Latest persisted record per domain.

        Domains without a current-month snapshot get a "still scraping"
        placeholder, unless today's error log already holds a failure for them.
        """
        domains, records, order = self.prepare(raw_domains)
        month = current_month()
        latest = await self.store.get_latest_batch(domains)
        found = 0
        pending = 0
        for domain in domains:
            snapshot = latest.get(domain)
            if snapshot is not None and snapshot.month_year == month:
                records.append(await self._record_from_snapshot(snapshot, month))
                found += 1
                continue
            error = await self.store.get_error(domain)
            if error is not None:
                records.append(TrafficRecord.failed(domain, error.message))
            else:
                records.append(TrafficRecord.failed(domain, STILL_SCRAPING_ERROR))
                pending += 1
        records.sort(key=_order_key(order))
        return TrafficResponse(
            results=records,
            metadata=BatchMetadata(
                total_domains=len(order),
                batches_processed=0,
                cache_hits=found,
                cache_misses=len(domains) - found,
                background_scraping=pending > 0,
            ),
        )

    async def retry_failed(self, raw_domains: Union[str, Iterable[str]]) -> TrafficResponse:
        """
        Re-scrape failed domains with exponential backoff between rounds.

        A round succeeds once any domain comes back with data; after the last
        attempt the final round's results are kept whatever they are.
        """
        domains, records, order = self.prepare(raw_domains)
        metrics = Metrics(len(domains))
        month = current_month()
        logger.info(f"Retrying {len(domains)} failed domain(s), up to {self.retry_attempts} attempt(s)")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff, min=2 * self.retry_backoff, max=30),
            retry=retry_if_result(lambda outcome: not _has_data(outcome)),
            retry_error_callback=lambda state: state.outcome.result(),
        )
        outcome: BatchOutcome = await retrying(self.orchestrator.run, domains)
        metrics.increment("groups", outcome.groups)
        records.extend(await self._persist(outcome, month, metrics))
        records.sort(key=_order_key(order))

        response = TrafficResponse(
            results=records,
            metadata=BatchMetadata(
                total_domains=len(order),
                batches_processed=outcome.groups,
                cache_hits=0,
                cache_misses=len(domains),
                errors=outcome.errors,
            ),
        )
        await self._final_report(metrics, outcome.errors)
        return response

    async def refresh_stale(self, max_age_days: int = config.CACHE_TTL_DAYS) -> TrafficResponse:
        """Re-scrape every stored domain whose latest snapshot is stale."""
        stale = await self.store.get_stale_domains(max_age_days)
        if not stale:
            logger.info("No stale domains to refresh")
            return TrafficResponse(
                results=[],
                metadata=BatchMetadata(total_domains=0, batches_processed=0, cache_hits=0, cache_misses=0),
            )
        logger.info(f"Refreshing {len(stale)} stale domain(s)")
        return await self.run(stale, bypass_cache=True)

    # Internals

    async def _gated_record(self, domain: str) -> Optional[TrafficRecord]:
        """Error record for a domain that already failed too often today."""
        error = await self.store.get_error(domain)
        if error is None or error.retry_count < self.max_daily_failures:
            return None
        logger.info(f"Skipping {domain}: failed {error.retry_count + 1} time(s) today")
        return TrafficRecord.failed(domain, error.message)

    async def _record_from_snapshot(self, snapshot: TrafficSnapshot, month: str) -> TrafficRecord:
        history = await self.store.get_history(snapshot.domain, GROWTH_HISTORY_MONTHS)
        growth = growth_rate(snapshot.monthly_visits, [s.to_history() for s in history], month)
        return snapshot.to_record(growth_rate=growth)

    async def _persist(self, outcome: BatchOutcome, month: str, metrics: Metrics) -> list[TrafficRecord]:
        """Store successes, log failures, and attach growth to every fresh record."""
        records = []
        for domain, result in outcome.results.items():
            record = result.record
            if record.error is None and record.has_data():
                await self._store_success(domain, result, month)
                stored = await self.store.get_history(domain, GROWTH_HISTORY_MONTHS)
                history = merge_history(result.historical_months, [s.to_history() for s in stored])
                record.growth_rate = growth_rate(record.monthly_visits, history, month)
                metrics.increment("ok")
            else:
                if record.error is None:
                    record.error = NO_DATA_ERROR
                await self.store.log_error(domain, record.error)
                metrics.increment("failed")
            records.append(record)
        return records

    async def _store_success(self, domain: str, result: ExtractionResult, month: str) -> None:
        snapshot = TrafficSnapshot.from_record(result.record, month)
        await self.cache.store(snapshot)
        if result.historical_months:
            await self.store.store_history(domain, result.historical_months)
        await self.store.clear_error(domain)

    def _mock_records(self, domains: list[str]) -> list[TrafficRecord]:
        """Plausible, schema-valid records; nothing is scraped or stored."""
        rng = random.Random(self.dry_run_seed)
        checked_at = utcnow()
        records = []
        for index, domain in enumerate(domains):
            base = MOCK_BASE_VISITS[index % len(MOCK_BASE_VISITS)]
            seconds = rng.randint(1, 5) * 60 + rng.randint(0, 59)
            records.append(
                TrafficRecord(
                    domain=domain,
                    monthly_visits=round(base * (1 + rng.random())),
                    avg_session_duration=format_duration(seconds),
                    avg_session_duration_seconds=seconds,
                    bounce_rate=round(rng.uniform(30, 70), 1),
                    pages_per_visit=round(rng.uniform(2, 5), 1),
                    checked_at=checked_at,
                )
            )
        return records

    async def _log_usage(self, response: TrafficResponse) -> None:
        results = response.results
        await self.store.log_usage(
            rows=len(results),
            errors=sum(1 for r in results if r.error),
            total_visits=sum(r.monthly_visits or 0 for r in results),
            cache_hits=response.metadata.cache_hits,
            cache_misses=response.metadata.cache_misses,
        )

    async def _final_report(self, metrics: Metrics, errors: list[str]) -> None:
        """Log the run summary and export it."""
        summary = metrics.get_summary()
        logger.info("=" * 60)
        logger.info("FINAL REPORT")
        logger.info(f"Run ID: {self.run_id}")
        logger.info(f"Elapsed: {summary['elapsed_seconds']:.1f}s")
        metrics.report()
        logger.info(f"Groups: {summary['groups']} | Group errors: {len(errors)}")
        logger.info("=" * 60)
        if self.export_metrics:
            await self.exporter.export_metrics(summary, errors=len(errors))
