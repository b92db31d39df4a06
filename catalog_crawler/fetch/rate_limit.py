"""Politeness delay per domain."""
import asyncio
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Dict, Optional
from urllib.parse import urlparse

if TYPE_CHECKING:
    from catalog_crawler.jobs.run_control import CrawlControl

logger = logging.getLogger(__name__)


class RateLimiter:
    """Enforces a minimum pause between requests to the same domain.

    The first request to a domain goes out immediately; later ones wait until
    `min_interval` seconds have passed since the previous one finished (see
    `release`). Waits go through the crawl control so a deadline or cancel
    interrupts them.
    """

    def __init__(self, min_interval: float):
        self.min_interval = max(min_interval, 0.0)
        self._last_request: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _get_domain(self, url: str) -> str:
        """Extract domain from URL."""
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}"

    async def acquire(self, url: str, control: Optional["CrawlControl"] = None) -> None:
        """Wait if necessary to respect the interval."""
        domain = self._get_domain(url)
        async with self._locks[domain]:
            last = self._last_request.get(domain)
            if last is None or self.min_interval <= 0:
                return
            wait_time = self.min_interval - (time.monotonic() - last)
            if wait_time > 0:
                logger.debug(f"Waiting {wait_time:.2f}s before next request to {domain}")
                if control is not None:
                    await control.guard(asyncio.sleep(wait_time))
                else:
                    await asyncio.sleep(wait_time)

    def release(self, url: str) -> None:
        """Mark a request to url's domain as finished; the next wait counts from now."""
        self._last_request[self._get_domain(url)] = time.monotonic()
