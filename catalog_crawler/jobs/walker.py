"""Pagination walker: drives page fetches for one crawl."""
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional, Protocol

from selectolax.parser import HTMLParser

from catalog_crawler.config import config
from catalog_crawler.errors import NetworkFailure
from catalog_crawler.fetch.rate_limit import RateLimiter
from catalog_crawler.fetch.urls import page_url
from catalog_crawler.jobs.metrics import Metrics
from catalog_crawler.jobs.run_control import CrawlControl, CrawlInterrupted
from catalog_crawler.parse.html_parser import ExtractionSettings, PageExtraction, extract_page, find_next_url
from catalog_crawler.parse.models import ExtractionConfig, PageRange, ScrapedRecord

logger = logging.getLogger(__name__)


class Fetcher(Protocol):
    async def fetch(self, url: str) -> str: ...


class WalkState(str, Enum):
    POSITIONED = "positioned"
    FETCHING = "fetching"
    ADVANCING = "advancing"
    DONE = "done"


@dataclass
class WalkResult:
    """Everything one walk produced, including where and why it stopped."""

    records: list[ScrapedRecord] = field(default_factory=list)
    pages_fetched: int = 0
    failed_pages: list[str] = field(default_factory=list)
    mode: str = "link"
    stopped_reason: Optional[str] = None
    interrupted: bool = False
    last_failure: Optional[NetworkFailure] = None
    metrics: Optional[Metrics] = None


class PaginationWalker:
    """Fetches catalog pages one at a time and accumulates their records.

    Link mode follows the configured next-page link up to max_pages. Range
    mode synthesizes ?page=N URLs for an explicit page range. Only a failure
    on the very first page raises; later failures end (link mode) or skip
    (range mode) with the records gathered so far. A CrawlInterrupted from
    the control ends the walk the same way.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        page_delay: Optional[float] = None,
        settings: Optional[ExtractionSettings] = None,
        limiter: Optional[RateLimiter] = None,
    ):
        self.fetcher = fetcher
        delay = page_delay if page_delay is not None else config.PAGE_DELAY
        self.limiter = limiter or RateLimiter(delay)
        self.settings = settings or ExtractionSettings()

    async def walk(
        self,
        extraction_config: ExtractionConfig,
        page_range: Optional[PageRange] = None,
        control: Optional[CrawlControl] = None,
        result: Optional[WalkResult] = None,
    ) -> WalkResult:
        """Walk the pages of one crawl.

        A caller-supplied result is filled in place, so its records and
        counts stay readable when the walk is cancelled midway.
        """
        control = control or CrawlControl()
        result = result if result is not None else WalkResult()
        id_counter = itertools.count(1)
        if page_range is not None:
            return await self._walk_range(extraction_config, page_range, control, id_counter, result)
        return await self._walk_links(extraction_config, control, id_counter, result)

    async def _fetch_page(
        self,
        url: str,
        extraction_config: ExtractionConfig,
        control: CrawlControl,
        id_counter: Iterator[int],
    ) -> tuple[PageExtraction, HTMLParser]:
        await self.limiter.acquire(url, control)
        try:
            html = await control.guard(self.fetcher.fetch(url))
        finally:
            self.limiter.release(url)
        tree = HTMLParser(html)
        extraction = extract_page(tree, extraction_config, url, id_counter, self.settings)
        return extraction, tree

    def _record_failure(self, result: WalkResult, url: str, error: NetworkFailure, control: CrawlControl) -> None:
        control.record_error(error.status_code)
        result.metrics.record_failure(error.kind.value)
        result.failed_pages.append(url)
        result.last_failure = error

    def _record_page(self, result: WalkResult, extraction: PageExtraction, control: CrawlControl) -> None:
        control.record_success()
        result.pages_fetched += 1
        result.records.extend(extraction.records)
        result.metrics.record_page(len(extraction.records), extraction.strategy)
        result.metrics.report()

    async def _walk_links(
        self,
        extraction_config: ExtractionConfig,
        control: CrawlControl,
        id_counter: Iterator[int],
        result: WalkResult,
    ) -> WalkResult:
        pagination = extraction_config.pagination
        max_pages = pagination.max_pages if pagination else 1
        next_selector = pagination.next_page_selector if pagination else None

        result.mode = "link"
        result.metrics = Metrics(total_pages=max_pages)
        url = extraction_config.target_url
        visited: set[str] = set()
        state = WalkState.POSITIONED

        while state is not WalkState.DONE:
            if result.pages_fetched >= max_pages:
                result.stopped_reason = f"Reached max_pages={max_pages}"
                break

            state = WalkState.FETCHING
            logger.info(f"Fetching page {result.pages_fetched + 1}/{max_pages}: {url}")
            try:
                extraction, tree = await self._fetch_page(url, extraction_config, control, id_counter)
            except NetworkFailure as e:
                self._record_failure(result, url, e, control)
                if result.pages_fetched == 0:
                    raise
                logger.warning(f"Stopping link walk after page failure: {e}")
                result.stopped_reason = f"Fetch failed: {e.message}"
                break
            except CrawlInterrupted as e:
                result.interrupted = True
                result.stopped_reason = e.reason
                break

            visited.add(url)
            self._record_page(result, extraction, control)

            state = WalkState.ADVANCING
            next_url = find_next_url(tree, next_selector, url)
            if not next_url:
                result.stopped_reason = "No next page"
                state = WalkState.DONE
            elif next_url == url or next_url in visited:
                logger.info(f"Next page link points back to {next_url}, stopping")
                result.stopped_reason = "Next page already visited"
                state = WalkState.DONE
            else:
                url = next_url
                state = WalkState.POSITIONED

        logger.info(
            f"Link walk finished: {result.pages_fetched} pages, {len(result.records)} records "
            f"({result.stopped_reason})"
        )
        return result

    async def _walk_range(
        self,
        extraction_config: ExtractionConfig,
        page_range: PageRange,
        control: CrawlControl,
        id_counter: Iterator[int],
        result: WalkResult,
    ) -> WalkResult:
        result.mode = "range"
        result.metrics = Metrics(total_pages=page_range.count)

        for page in range(page_range.start, page_range.end + 1):
            url = page_url(extraction_config.target_url, page)
            logger.info(f"Fetching page {page} ({page - page_range.start + 1}/{page_range.count}): {url}")
            try:
                extraction, _ = await self._fetch_page(url, extraction_config, control, id_counter)
            except NetworkFailure as e:
                self._record_failure(result, url, e, control)
                if page == page_range.start:
                    raise
                logger.warning(f"Skipping page {page}: {e}")
                continue
            except CrawlInterrupted as e:
                result.interrupted = True
                result.stopped_reason = e.reason
                break
            self._record_page(result, extraction, control)
        else:
            result.stopped_reason = f"Reached end page {page_range.end}"

        logger.info(
            f"Range walk finished: {result.pages_fetched}/{page_range.count} pages, "
            f"{len(result.records)} records, {len(result.failed_pages)} failed"
        )
        return result
