"""Bounded-parallel execution of extraction groups."""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Optional, Protocol

from traffic_bulk.config import config
from traffic_bulk.fetch.endpoints import MAX_DOMAINS_PER_QUERY
from traffic_bulk.parse.domains import chunk
from traffic_bulk.parse.engine import NOT_FOUND_ERROR
from traffic_bulk.parse.models import ExtractionResult, TrafficRecord

logger = logging.getLogger(__name__)


class Extractor(Protocol):
    def extract(self, domains: list[str]) -> Awaitable[list[ExtractionResult]]: ...


@dataclass
class BatchOutcome:
    """Results keyed by domain, the number of groups run and group-level errors."""

    results: dict[str, ExtractionResult] = field(default_factory=dict)
    groups: int = 0
    errors: list[str] = field(default_factory=list)


class BatchOrchestrator:
    """
    Split domains into upstream-sized groups and run them in waves.

    At most ``parallelism`` groups are in flight; waves are separated by
    ``inter_group_delay`` seconds. A failing or hanging group only affects
    its own domains.
    """

    def __init__(
        self,
        extractor: Extractor,
        group_size: int = config.GROUP_SIZE,
        parallelism: int = config.PARALLEL_GROUPS,
        inter_group_delay: float = config.GROUP_DELAY,
        group_timeout: Optional[float] = config.GROUP_TIMEOUT,
    ):
        if not 1 <= group_size <= MAX_DOMAINS_PER_QUERY:
            raise ValueError(f"group_size must be between 1 and {MAX_DOMAINS_PER_QUERY}")
        if parallelism < 1:
            raise ValueError("parallelism must be >= 1")
        self.extractor = extractor
        self.group_size = group_size
        self.parallelism = parallelism
        self.inter_group_delay = inter_group_delay
        self.group_timeout = group_timeout

    async def _run_group(self, index: int, group: list[str]) -> tuple[list[ExtractionResult], Optional[str]]:
        """Run one group; failures become per-domain error records."""
        try:
            if self.group_timeout:
                results = await asyncio.wait_for(self.extractor.extract(group), timeout=self.group_timeout)
            else:
                results = await self.extractor.extract(group)
            return results, None
        except asyncio.TimeoutError:
            message = f"Group timed out after {self.group_timeout:g}s"
        except Exception as e:
            message = str(e) or type(e).__name__
        logger.error(f"Group {index + 1} ({', '.join(group)}) failed: {message}")
        failed = [ExtractionResult(record=TrafficRecord.failed(domain, message)) for domain in group]
        return failed, message

    async def run(self, domains: list[str]) -> BatchOutcome:
        outcome = BatchOutcome()
        if not domains:
            return outcome

        groups = chunk(domains, self.group_size)
        waves = chunk(list(enumerate(groups)), self.parallelism)
        logger.info(
            f"Processing {len(domains)} domain(s) in {len(groups)} group(s), "
            f"{len(waves)} wave(s) of up to {self.parallelism}"
        )

        for wave_index, wave in enumerate(waves):
            if wave_index > 0 and self.inter_group_delay > 0:
                await asyncio.sleep(self.inter_group_delay)
            wave_results = await asyncio.gather(*(self._run_group(i, group) for i, group in wave))
            for (_, group), (results, error) in zip(wave, wave_results):
                outcome.groups += 1
                if error:
                    outcome.errors.append(error)
                for result in results:
                    outcome.results.setdefault(result.record.domain, result)
                for domain in group:
                    if domain not in outcome.results:
                        outcome.results[domain] = ExtractionResult(
                            record=TrafficRecord.failed(domain, NOT_FOUND_ERROR)
                        )
        return outcome
