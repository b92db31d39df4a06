"""Crawl runner: one invocation end to end, plus multi-site passes."""
import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Iterable, Optional
from urllib.parse import urlparse

from catalog_crawler.config import config
from catalog_crawler.errors import ConfigError, CrawlFailed, NetworkFailure
from catalog_crawler.fetch.client import FetchClient
from catalog_crawler.jobs.metrics_exporter import MetricsExporter
from catalog_crawler.jobs.run_control import CrawlControl, CrawlInterrupted
from catalog_crawler.jobs.sites import SiteRegistry, WebsiteConfig
from catalog_crawler.jobs.walker import Fetcher, PaginationWalker, WalkResult
from catalog_crawler.parse.html_parser import ExtractionSettings
from catalog_crawler.parse.models import (
    ExtractionConfig,
    JobMeta,
    PageRange,
    PaginationConfig,
    ScrapedRecord,
    TriggeredBy,
)
from catalog_crawler.parse.presets import resolve_config
from catalog_crawler.store.base import ProductStore, product_key
from catalog_crawler.store.dev_storage import DevStorage

logger = logging.getLogger(__name__)


@dataclass
class CrawlRequest:
    """Invocation input for one crawl."""

    target_url: str
    config_name: Optional[str] = None
    custom_config: Optional[dict] = None
    start_page: Optional[int] = None
    end_page: Optional[int] = None
    max_pages: Optional[int] = None
    site_name: Optional[str] = None
    triggered_by: TriggeredBy = "api"


@dataclass
class CrawlResult:
    records: list[ScrapedRecord]
    pages_fetched: int
    job_id: str
    source_site: str
    products_added: int = 0
    products_updated: int = 0
    failed_pages: list[str] = field(default_factory=list)
    status: str = "completed"
    stopped_reason: Optional[str] = None
    interrupted: bool = False
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "success": self.status == "completed",
            "jobId": self.job_id,
            "sourceSite": self.source_site,
            "status": self.status,
            "count": len(self.records),
            "pagesFetched": self.pages_fetched,
            "productsAdded": self.products_added,
            "productsUpdated": self.products_updated,
            "failedPages": self.failed_pages,
            "stoppedReason": self.stopped_reason,
            "duration": round(self.duration_seconds, 2),
            "records": [record.model_dump(mode="json") for record in self.records],
        }


@dataclass
class SiteOutcome:
    """Per-site result of a multi-site pass."""

    site: str
    name: str
    url: str
    success: bool
    products_scraped: int = 0
    products_added: int = 0
    products_updated: int = 0
    pages_fetched: int = 0
    job_id: Optional[str] = None
    error: Optional[str] = None
    failed_pages: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def page_range_from(start_page: Optional[int], end_page: Optional[int]) -> Optional[PageRange]:
    """Validated page range, or None for link-following mode.

    Raises ConfigError for half-open, inverted or oversized ranges.
    """
    if start_page is None and end_page is None:
        return None
    if start_page is None or end_page is None:
        raise ConfigError("Both start page and end page are required for a page range")
    if start_page < 1 or end_page < start_page:
        raise ConfigError(f"Invalid page range {start_page}-{end_page}")
    page_range = PageRange(start=start_page, end=end_page)
    if page_range.count > config.MAX_PAGE_RANGE:
        raise ConfigError(
            f"Page range too large: maximum {config.MAX_PAGE_RANGE} pages per request, got {page_range.count}"
        )
    return page_range


def with_max_pages(extraction_config: ExtractionConfig, max_pages: int) -> ExtractionConfig:
    """Copy of extraction_config with its link-following page cap replaced."""
    if max_pages < 1:
        raise ConfigError(f"max_pages must be at least 1, got {max_pages}")
    pagination = extraction_config.pagination or PaginationConfig()
    return extraction_config.model_copy(update={"pagination": pagination.model_copy(update={"max_pages": max_pages})})


def dedupe_records(records: Iterable[ScrapedRecord]) -> list[ScrapedRecord]:
    """Keep the first record per persistence key."""
    seen: set[str] = set()
    unique = []
    for record in records:
        key = product_key(record.source_url, record.title)
        if key in seen:
            continue
        seen.add(key)
        unique.append(record)
    return unique


class CrawlRunner:
    """Runs crawls against a store and keeps each job record honest.

    A job is created only after the request validates, moves to running
    before the first fetch and ends completed or failed exactly once, also
    when the crawl is interrupted or cancelled.
    """

    def __init__(
        self,
        store: ProductStore,
        fetcher: Optional[Fetcher] = None,
        page_delay: Optional[float] = None,
        site_delay: Optional[float] = None,
        settings: Optional[ExtractionSettings] = None,
        stop_after_seconds: Optional[float] = None,
        dev_mode: bool = False,
        dev_storage: Optional[DevStorage] = None,
        export_metrics: bool = False,
    ):
        self.store = store
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or FetchClient()
        self.walker = PaginationWalker(self.fetcher, page_delay=page_delay, settings=settings)
        self.site_delay = site_delay if site_delay is not None else config.SITE_DELAY
        self.stop_after_seconds = stop_after_seconds
        self.dev_storage = dev_storage or (DevStorage() if dev_mode else None)
        self.export_metrics = export_metrics

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_fetcher:
            await self.fetcher.aclose()

    def new_control(self) -> CrawlControl:
        return CrawlControl(stop_after_seconds=self.stop_after_seconds)

    async def run(self, request: CrawlRequest, control: Optional[CrawlControl] = None) -> CrawlResult:
        """Crawl one target and persist what was found.

        Raises ConfigError before any job or fetch for bad input, and
        CrawlFailed when the first page cannot be fetched or persistence
        fails. An interrupted crawl keeps its partial records and ends as a
        failed job.
        """
        started = time.monotonic()
        extraction_config = resolve_config(
            request.target_url, request.config_name, request.custom_config, request.site_name
        )
        if request.max_pages:
            extraction_config = with_max_pages(extraction_config, request.max_pages)
        page_range = page_range_from(request.start_page, request.end_page)
        source_site = extraction_config.site_name or urlparse(extraction_config.target_url).netloc

        job_id = await self.store.create_job(
            JobMeta(
                source_site=source_site,
                source_url=extraction_config.target_url,
                start_page=page_range.start if page_range else 1,
                end_page=page_range.end if page_range else 1,
                triggered_by=request.triggered_by,
            )
        )
        logger.info(f"Job {job_id}: crawling {extraction_config.target_url} for {source_site}")
        control = control or self.new_control()
        progress = WalkResult()

        try:
            await self.store.update_job(job_id, status="running")
            try:
                walk = await self.walker.walk(extraction_config, page_range, control, progress)
            except NetworkFailure as e:
                duration = time.monotonic() - started
                await self._fail_job(job_id, f"{e.kind.value}: {e.message}", duration, failed_pages=[e.url])
                raise CrawlFailed(
                    e.message,
                    kind=e.kind.value,
                    status_code=e.status_code,
                    job_id=job_id,
                    duration_seconds=duration,
                ) from e

            records = dedupe_records(walk.records)
            if len(records) < len(walk.records):
                logger.info(f"Dropped {len(walk.records) - len(records)} duplicate records")

            try:
                added, updated = await self.store.upsert_batch(records, source_site, job_id)
            except Exception as e:
                duration = time.monotonic() - started
                logger.error(f"Job {job_id}: persistence failed: {e}")
                await self._fail_job(job_id, f"Persistence failed: {e}", duration, scraped=len(records))
                raise CrawlFailed(
                    f"Persistence failed: {e}", kind="persistence", job_id=job_id, duration_seconds=duration
                ) from e

            duration = time.monotonic() - started
            status = "failed" if walk.interrupted else "completed"
            await self.store.update_job(
                job_id,
                status=status,
                products_scraped=len(records),
                products_added=added,
                products_updated=updated,
                pages_fetched=walk.pages_fetched,
                failed_pages=walk.failed_pages,
                error_message=f"Interrupted: {walk.stopped_reason}" if walk.interrupted else None,
                duration_seconds=round(duration, 3),
            )
        except asyncio.CancelledError:
            await asyncio.shield(self._save_cancelled(job_id, source_site, progress, started))
            raise

        result = CrawlResult(
            records=records,
            pages_fetched=walk.pages_fetched,
            job_id=job_id,
            source_site=source_site,
            products_added=added,
            products_updated=updated,
            failed_pages=walk.failed_pages,
            status=status,
            stopped_reason=walk.stopped_reason,
            interrupted=walk.interrupted,
            duration_seconds=duration,
        )
        await self._after_run(result, walk, control)
        return result

    async def _fail_job(
        self,
        job_id: str,
        message: str,
        duration: float,
        scraped: int = 0,
        failed_pages: Optional[list[str]] = None,
        **counts,
    ) -> None:
        try:
            await self.store.update_job(
                job_id,
                status="failed",
                error_message=message,
                products_scraped=scraped,
                failed_pages=failed_pages or [],
                **counts,
                duration_seconds=round(duration, 3),
            )
        except Exception as e:
            # the original error is what the caller needs to see
            logger.error(f"Could not mark job {job_id} failed: {e}")

    async def _save_cancelled(self, job_id: str, source_site: str, progress: WalkResult, started: float) -> None:
        """Persist what a cancelled walk gathered, then fail the job with those counts."""
        records = dedupe_records(progress.records)
        added = updated = 0
        if records:
            try:
                added, updated = await self.store.upsert_batch(records, source_site, job_id)
            except Exception as e:
                logger.error(f"Job {job_id}: could not save {len(records)} records after cancel: {e}")
        logger.warning(f"Job {job_id} cancelled after {progress.pages_fetched} pages, {len(records)} records")
        await self._fail_job(
            job_id,
            "Interrupted: task cancelled",
            time.monotonic() - started,
            scraped=len(records),
            failed_pages=progress.failed_pages,
            pages_fetched=progress.pages_fetched,
            products_added=added,
            products_updated=updated,
        )

    async def _after_run(self, result: CrawlResult, walk: WalkResult, control: CrawlControl) -> None:
        summary = walk.metrics.get_summary() if walk.metrics else {}
        if self.export_metrics:
            exporter = MetricsExporter(result.job_id)
            await exporter.export_metrics(
                source_site=result.source_site,
                status=result.status,
                summary=summary,
                products_added=result.products_added,
                products_updated=result.products_updated,
            )
        if self.dev_storage:
            self.dev_storage.save_job_data(
                result.job_id,
                result.records,
                {**summary, "control": control.get_summary(), "stopped_reason": result.stopped_reason},
            )
        self._final_report(result, summary)

    def _final_report(self, result: CrawlResult, summary: dict) -> None:
        logger.info("=" * 60)
        logger.info("FINAL REPORT")
        logger.info(f"Job ID: {result.job_id} ({result.status})")
        logger.info(f"Site: {result.source_site}")
        logger.info(f"Elapsed: {result.duration_seconds:.2f} seconds")
        logger.info(f"Pages fetched: {result.pages_fetched}, failed: {len(result.failed_pages)}")
        logger.info(f"Products scraped: {len(result.records)}")
        logger.info(f"Added: {result.products_added}, updated: {result.products_updated}")
        if summary.get("strategies"):
            logger.info(f"Strategies: {summary['strategies']}")
        if result.stopped_reason:
            logger.info(f"Stopped: {result.stopped_reason}")
        logger.info("=" * 60)

    async def _run_site(
        self,
        site: WebsiteConfig,
        pages_per_site: Optional[int],
        triggered_by: TriggeredBy,
        control: CrawlControl,
    ) -> SiteOutcome:
        started = time.monotonic()
        request = CrawlRequest(
            target_url=site.url,
            config_name=site.preset,
            start_page=1 if pages_per_site else None,
            end_page=pages_per_site,
            max_pages=site.max_pages,
            site_name=site.name,
            triggered_by=triggered_by,
        )
        try:
            result = await self.run(request, control)
        except CrawlFailed as e:
            logger.error(f"{site.name} failed: {e.message}")
            return SiteOutcome(
                site=site.key,
                name=site.name,
                url=site.url,
                success=False,
                job_id=e.job_id,
                error=e.message,
                duration_seconds=e.duration_seconds or time.monotonic() - started,
            )
        except ConfigError as e:
            logger.error(f"{site.name} has an invalid config: {e}")
            return SiteOutcome(site=site.key, name=site.name, url=site.url, success=False, error=str(e))

        return SiteOutcome(
            site=site.key,
            name=site.name,
            url=site.url,
            success=result.status == "completed",
            products_scraped=len(result.records),
            products_added=result.products_added,
            products_updated=result.products_updated,
            pages_fetched=result.pages_fetched,
            job_id=result.job_id,
            error=result.stopped_reason if result.interrupted else None,
            failed_pages=result.failed_pages,
            duration_seconds=result.duration_seconds,
        )

    async def run_sites(
        self,
        sites: list[WebsiteConfig],
        pages_per_site: Optional[int] = None,
        concurrent: bool = False,
        triggered_by: TriggeredBy = "cron",
        control: Optional[CrawlControl] = None,
    ) -> list[SiteOutcome]:
        """Crawl several sites, one job each.

        Sequential runs wait site_delay between sites. Concurrent runs start
        one task per site; each keeps its own records and job. A site that
        fails does not stop the others.
        """
        control = control or self.new_control()

        if concurrent:
            return list(
                await asyncio.gather(
                    *(self._run_site(site, pages_per_site, triggered_by, control.child()) for site in sites)
                )
            )

        outcomes: list[SiteOutcome] = []
        for index, site in enumerate(sites):
            if index > 0 and self.site_delay > 0:
                try:
                    await control.guard(asyncio.sleep(self.site_delay))
                except CrawlInterrupted as e:
                    logger.warning(f"Stopping multi-site run before {site.name}: {e.reason}")
                    outcomes.extend(
                        SiteOutcome(site=s.key, name=s.name, url=s.url, success=False, error=f"Skipped: {e.reason}")
                        for s in sites[index:]
                    )
                    break
            logger.info(f"Site {index + 1}/{len(sites)}: {site.name}")
            outcomes.append(await self._run_site(site, pages_per_site, triggered_by, control.child()))
        return outcomes

    async def run_scheduled(
        self,
        registry: SiteRegistry,
        force: bool = False,
        pages_per_site: Optional[int] = None,
        concurrent: bool = False,
        control: Optional[CrawlControl] = None,
    ) -> list[SiteOutcome]:
        """Crawl the sites whose interval elapsed (every enabled site when forced).

        Successful sites get their last run time updated.
        """
        sites = registry.enabled() if force else registry.needing_update()
        if not sites:
            logger.info("No websites need updating at this time")
            return []
        logger.info(f"Updating {len(sites)} websites: {[site.name for site in sites]}")
        outcomes = await self.run_sites(sites, pages_per_site, concurrent, triggered_by="cron", control=control)
        for outcome in outcomes:
            if outcome.success:
                registry.mark_run(outcome.site)
        return outcomes
