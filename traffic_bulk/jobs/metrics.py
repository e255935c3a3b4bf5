"""Metrics tracking for bulk lookups."""
import logging
import time
from collections import defaultdict
from typing import Dict

logger = logging.getLogger(__name__)


class Metrics:
    """Per-run counters: cache partition, scrape outcomes and throughput."""

    def __init__(self, total: int):
        self.total = total
        self.start_time = time.time()
        self.counters: Dict[str, int] = defaultdict(int)

    def increment(self, key: str, amount: int = 1) -> None:
        """Increment a counter."""
        self.counters[key] += amount

    def elapsed(self) -> float:
        return time.time() - self.start_time

    def get_rate(self) -> float:
        """Scraped domains per second."""
        elapsed = self.elapsed()
        scraped = self.counters.get("ok", 0) + self.counters.get("failed", 0)
        if elapsed > 0:
            return scraped / elapsed
        return 0.0

    def success_rate(self) -> float:
        """Share of scraped domains that came back with data, in percent."""
        scraped = self.counters.get("ok", 0) + self.counters.get("failed", 0)
        if scraped == 0:
            return 0.0
        return self.counters.get("ok", 0) * 100 / scraped

    def report(self) -> None:
        """Log current metrics."""
        logger.info(
            f"Domains: {self.total} | "
            f"Cache hits: {self.counters.get('cache_hits', 0)} | "
            f"Misses: {self.counters.get('cache_misses', 0)} | "
            f"Scraped OK: {self.counters.get('ok', 0)} | "
            f"Failed: {self.counters.get('failed', 0)} | "
            f"Skipped: {self.counters.get('skipped', 0)} | "
            f"Rate: {self.get_rate():.2f}/s"
        )

    def get_summary(self) -> Dict:
        """Get summary statistics."""
        return {
            "total": self.total,
            "cache_hits": self.counters.get("cache_hits", 0),
            "cache_misses": self.counters.get("cache_misses", 0),
            "ok": self.counters.get("ok", 0),
            "failed": self.counters.get("failed", 0),
            "skipped": self.counters.get("skipped", 0),
            "groups": self.counters.get("groups", 0),
            "success_rate": round(self.success_rate(), 2),
            "rate": self.get_rate(),
            "elapsed_seconds": self.elapsed(),
        }
