"""Two-tier traffic cache: in-process dict in front of the snapshot store."""
import logging
import time
from datetime import datetime
from typing import Optional

from traffic_bulk.config import config
from traffic_bulk.parse.models import TrafficSnapshot
from traffic_bulk.store.freshness import current_month, is_snapshot_fresh
from traffic_bulk.store.snapshots import SnapshotStore

logger = logging.getLogger(__name__)

MEMORY_TTL_SECONDS = 3600


class TrafficCache:
    """
    Fresh-snapshot lookups for the request pipeline.

    The memory tier is keyed by (domain, month) and only ever holds what the
    durable store already has, so dropping it loses nothing.
    """

    def __init__(
        self,
        store: SnapshotStore,
        max_age_days: int = config.CACHE_TTL_DAYS,
        memory_ttl: float = MEMORY_TTL_SECONDS,
    ):
        self.snapshots = store
        self.max_age_days = max_age_days
        self.memory_ttl = memory_ttl
        self._memory: dict[tuple[str, str], tuple[float, TrafficSnapshot]] = {}

    def _remember(self, snapshot: TrafficSnapshot) -> None:
        self._memory[(snapshot.domain, snapshot.month_year)] = (time.monotonic(), snapshot)

    def _recall(self, domain: str, month_year: str) -> Optional[TrafficSnapshot]:
        entry = self._memory.get((domain, month_year))
        if entry is None:
            return None
        stored_at, snapshot = entry
        if time.monotonic() - stored_at > self.memory_ttl:
            del self._memory[(domain, month_year)]
            return None
        return snapshot

    def clear_memory(self) -> None:
        self._memory.clear()

    async def lookup_batch(
        self, domains: list[str], now: Optional[datetime] = None
    ) -> dict[str, TrafficSnapshot]:
        """Fresh snapshots only; stale or unknown domains are absent."""
        month = current_month(now)
        hits: dict[str, TrafficSnapshot] = {}
        pending: list[str] = []
        for domain in domains:
            snapshot = self._recall(domain, month)
            if snapshot is not None and is_snapshot_fresh(
                snapshot.month_year, snapshot.checked_at, self.max_age_days, now
            ):
                hits[domain] = snapshot
            else:
                pending.append(domain)

        if pending:
            stored = await self.snapshots.get_latest_batch(pending)
            for domain, snapshot in stored.items():
                if is_snapshot_fresh(snapshot.month_year, snapshot.checked_at, self.max_age_days, now):
                    self._remember(snapshot)
                    hits[domain] = snapshot

        logger.debug(f"Cache lookup: {len(hits)} hit(s), {len(domains) - len(hits)} miss(es)")
        return hits

    async def store(self, snapshot: TrafficSnapshot) -> None:
        """Write through to the durable store, then the memory tier."""
        await self.snapshots.store(snapshot)
        self._remember(snapshot)

    async def is_fresh(
        self, domain: str, max_age_days: Optional[int] = None, now: Optional[datetime] = None
    ) -> bool:
        limit = self.max_age_days if max_age_days is None else max_age_days
        snapshot = self._recall(domain, current_month(now)) or await self.snapshots.get_latest(domain)
        if snapshot is None:
            return False
        return is_snapshot_fresh(snapshot.month_year, snapshot.checked_at, limit, now)
