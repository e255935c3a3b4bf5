"""Rate limiter per upstream host."""
import asyncio
import logging
import time
from collections import defaultdict
from typing import Dict
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class RateLimiter:
    """Spaces out page loads against the same upstream host."""

    def __init__(self, rate_per_second: float):
        self.rate_per_second = rate_per_second
        self.min_interval = 1.0 / rate_per_second if rate_per_second > 0 else 0
        self._last_request: Dict[str, float] = defaultdict(float)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @staticmethod
    def host_key(url: str) -> str:
        """scheme://host of a URL; queries for different domains share it."""
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}"

    async def acquire(self, url: str) -> float:
        """Wait until the host's slot is free. Returns seconds waited."""
        host = self.host_key(url)
        waited = 0.0
        async with self._locks[host]:
            elapsed = time.monotonic() - self._last_request[host]
            if self._last_request[host] and elapsed < self.min_interval:
                waited = self.min_interval - elapsed
                logger.debug(f"Rate limit: waiting {waited:.2f}s for {host}")
                await asyncio.sleep(waited)
            self._last_request[host] = time.monotonic()
        return waited
