"""Tests for the crawl runner and multi-site passes."""
import asyncio
from datetime import timedelta

import pytest

from catalog_crawler.errors import ConfigError, CrawlFailed
from catalog_crawler.jobs.run_control import CrawlControl
from catalog_crawler.jobs.runner import (
    CrawlRequest,
    CrawlRunner,
    dedupe_records,
    page_range_from,
)
from catalog_crawler.jobs.sites import SiteRegistry, WebsiteConfig
from catalog_crawler.parse.models import ScrapedRecord, utcnow
from catalog_crawler.store.memory import MemoryStore

from conftest import BASE, FakeFetcher, card, catalog_page, forbidden, structured_page

SHOP_CONFIG = {
    "selectors": {"listContainer": ".products", "cardSelector": ".product", "title": ".title", "price": ".price"},
    "pagination": {"nextPageSelector": "a.next", "maxPages": 5},
}

SHOP_A = "https://a.example/list"
SHOP_B = "https://b.example/list"


def two_pages() -> dict:
    return {
        BASE: catalog_page([card("Alpha", "$10"), card("Beta", "$20")], next_href="/catalog?page=2"),
        f"{BASE}?page=2": catalog_page([card("Gamma", "$30")]),
    }


def runner_for(store, pages, **kwargs) -> CrawlRunner:
    return CrawlRunner(store, fetcher=FakeFetcher(pages), page_delay=0, site_delay=0, **kwargs)


def sites() -> SiteRegistry:
    return SiteRegistry(
        [
            WebsiteConfig(key="a", name="Shop A", url=SHOP_A, preset="generic"),
            WebsiteConfig(key="b", name="Shop B", url=SHOP_B, preset="generic", interval_minutes=60),
        ]
    )


def site_pages() -> dict:
    return {
        SHOP_A: structured_page([("A1", "1500"), ("A2", "3000")]),
        SHOP_B: structured_page([("B1", "4500")]),
    }


class BrokenStore(MemoryStore):
    async def upsert_batch(self, records, source_site, job_id=None):
        raise RuntimeError("disk full")


class HangingFetcher(FakeFetcher):
    def __init__(self):
        super().__init__({})
        self.started = asyncio.Event()

    async def fetch(self, url: str) -> str:
        self.calls.append(url)
        self.started.set()
        await asyncio.sleep(60)
        return ""


@pytest.mark.asyncio
async def test_run_persists_and_completes_job(memory_store):
    runner = runner_for(memory_store, two_pages())

    result = await runner.run(CrawlRequest(target_url=BASE, custom_config=SHOP_CONFIG, site_name="Example Shop"))

    assert result.status == "completed"
    assert [r.title for r in result.records] == ["Alpha", "Beta", "Gamma"]
    assert (result.products_added, result.products_updated) == (3, 0)
    assert result.source_site == "Example Shop"

    job = memory_store.jobs[result.job_id]
    assert job.status == "completed"
    assert job.products_scraped == 3
    assert job.pages_fetched == 2
    assert job.completed_at is not None
    assert job.triggered_by == "api"
    assert len(memory_store.products) == 3


@pytest.mark.asyncio
async def test_second_run_updates(memory_store):
    runner = runner_for(memory_store, two_pages())
    request = CrawlRequest(target_url=BASE, custom_config=SHOP_CONFIG)

    await runner.run(request)
    result = await runner.run(request)

    assert (result.products_added, result.products_updated) == (0, 3)
    assert len(memory_store.products) == 3
    assert len(memory_store.jobs) == 2


@pytest.mark.asyncio
async def test_source_site_defaults_to_host(memory_store):
    runner = runner_for(memory_store, two_pages())

    result = await runner.run(CrawlRequest(target_url=BASE, custom_config=SHOP_CONFIG))

    assert result.source_site == "shop.example"


@pytest.mark.asyncio
async def test_first_page_forbidden_fails_job(memory_store):
    runner = runner_for(memory_store, {BASE: forbidden(BASE)})

    with pytest.raises(CrawlFailed) as exc_info:
        await runner.run(CrawlRequest(target_url=BASE, custom_config=SHOP_CONFIG))

    error = exc_info.value
    assert error.kind == "forbidden"
    assert error.status_code == 403
    job = memory_store.jobs[error.job_id]
    assert job.status == "failed"
    assert "forbidden" in job.error_message
    assert job.failed_pages == [BASE]
    assert memory_store.upsert_calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "request_kwargs",
    [
        {"target_url": "not a url"},
        {"target_url": BASE, "config_name": "nope"},
        {"target_url": BASE, "start_page": 3},
        {"target_url": BASE, "start_page": 5, "end_page": 2},
        {"target_url": BASE, "start_page": 1, "end_page": 51},
        {"target_url": BASE, "custom_config": {"title": "h2[["}},
    ],
)
async def test_bad_requests_create_no_job(memory_store, request_kwargs):
    runner = runner_for(memory_store, two_pages())

    with pytest.raises(ConfigError):
        await runner.run(CrawlRequest(**request_kwargs))

    assert memory_store.jobs == {}
    assert runner.fetcher.calls == []


@pytest.mark.asyncio
async def test_range_request(memory_store):
    runner = runner_for(memory_store, two_pages())

    result = await runner.run(CrawlRequest(target_url=BASE, custom_config=SHOP_CONFIG, start_page=1, end_page=3))

    assert result.pages_fetched == 2
    assert result.failed_pages == [f"{BASE}?page=3"]
    job = memory_store.jobs[result.job_id]
    assert (job.start_page, job.end_page) == (1, 3)
    assert job.status == "completed"


@pytest.mark.asyncio
async def test_max_pages_override(memory_store):
    runner = runner_for(memory_store, two_pages())

    result = await runner.run(CrawlRequest(target_url=BASE, custom_config=SHOP_CONFIG, max_pages=1))

    assert result.pages_fetched == 1
    assert runner.fetcher.calls == [BASE]


@pytest.mark.asyncio
async def test_persistence_failure_fails_job():
    store = BrokenStore()
    runner = runner_for(store, two_pages())

    with pytest.raises(CrawlFailed) as exc_info:
        await runner.run(CrawlRequest(target_url=BASE, custom_config=SHOP_CONFIG))

    assert exc_info.value.kind == "persistence"
    job = store.jobs[exc_info.value.job_id]
    assert job.status == "failed"
    assert "disk full" in job.error_message


@pytest.mark.asyncio
async def test_interrupted_run_keeps_partial_records(memory_store):
    pages = two_pages()
    control = CrawlControl()

    class CancellingFetcher(FakeFetcher):
        async def fetch(self, url):
            if url.endswith("page=2"):
                control.cancel("deadline")
                await asyncio.sleep(60)
            return await super().fetch(url)

    runner = CrawlRunner(memory_store, fetcher=CancellingFetcher(pages), page_delay=0)

    result = await runner.run(CrawlRequest(target_url=BASE, custom_config=SHOP_CONFIG), control)

    assert result.status == "failed"
    assert result.interrupted is True
    assert [r.title for r in result.records] == ["Alpha", "Beta"]
    job = memory_store.jobs[result.job_id]
    assert job.status == "failed"
    assert job.error_message == "Interrupted: deadline"
    assert job.products_added == 2
    assert len(memory_store.products) == 2


@pytest.mark.asyncio
async def test_cancelled_task_fails_job(memory_store):
    fetcher = HangingFetcher()
    runner = CrawlRunner(memory_store, fetcher=fetcher, page_delay=0)

    task = asyncio.create_task(runner.run(CrawlRequest(target_url=BASE, custom_config=SHOP_CONFIG)))
    await fetcher.started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    (job,) = memory_store.jobs.values()
    assert job.status == "failed"
    assert job.error_message.startswith("Interrupted")


@pytest.mark.asyncio
async def test_cancelled_task_keeps_pages_already_walked(memory_store):
    started = asyncio.Event()

    class StallOnSecondPage(FakeFetcher):
        async def fetch(self, url):
            if url.endswith("page=2"):
                started.set()
                await asyncio.sleep(60)
            return await super().fetch(url)

    runner = CrawlRunner(memory_store, fetcher=StallOnSecondPage(two_pages()), page_delay=0)

    task = asyncio.create_task(runner.run(CrawlRequest(target_url=BASE, custom_config=SHOP_CONFIG)))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    (job,) = memory_store.jobs.values()
    assert job.status == "failed"
    assert job.error_message == "Interrupted: task cancelled"
    assert job.pages_fetched == 1
    assert job.products_scraped == 2
    assert job.products_added == 2
    assert sorted(p.title for p in memory_store.products.values()) == ["Alpha", "Beta"]


def test_page_range_from():
    assert page_range_from(None, None) is None
    assert page_range_from(2, 4).count == 3
    with pytest.raises(ConfigError):
        page_range_from(None, 4)
    with pytest.raises(ConfigError):
        page_range_from(0, 4)


def test_dedupe_records_by_key():
    records = [
        ScrapedRecord(id="1", title="Alpha", source_url=BASE),
        ScrapedRecord(id="2", title="alpha ", source_url=f"{BASE}?page=2"),
        ScrapedRecord(id="3", title="Beta", source_url=BASE),
    ]

    assert [r.id for r in dedupe_records(records)] == ["1", "3"]


@pytest.mark.asyncio
@pytest.mark.parametrize("concurrent", [False, True])
async def test_run_sites_isolates_failures(memory_store, concurrent):
    pages = site_pages()
    pages[SHOP_A] = forbidden(SHOP_A)
    runner = runner_for(memory_store, pages)
    registry = sites()

    outcomes = await runner.run_sites(registry.all(), concurrent=concurrent)

    by_site = {o.site: o for o in outcomes}
    assert by_site["a"].success is False
    assert by_site["a"].job_id is not None
    assert by_site["b"].success is True
    assert by_site["b"].products_scraped == 1
    assert by_site["b"].products_added == 1
    assert {job.source_site for job in memory_store.jobs.values()} == {"Shop A", "Shop B"}
    assert all(job.triggered_by == "cron" for job in memory_store.jobs.values())


@pytest.mark.asyncio
async def test_run_sites_concurrent_keeps_records_apart(memory_store):
    runner = runner_for(memory_store, site_pages())

    outcomes = await runner.run_sites(sites().all(), concurrent=True)

    assert [(o.site, o.products_scraped) for o in outcomes] == [("a", 2), ("b", 1)]
    by_site = {}
    for product in memory_store.products.values():
        by_site.setdefault(product.source_site, set()).add(product.title)
    assert by_site == {"Shop A": {"A1", "A2"}, "Shop B": {"B1"}}


@pytest.mark.asyncio
async def test_run_sites_with_page_range(memory_store):
    runner = runner_for(memory_store, site_pages())
    site = sites().get("a")

    (outcome,) = await runner.run_sites([site], pages_per_site=2)

    assert outcome.success is True
    assert outcome.pages_fetched == 1
    assert outcome.failed_pages == [f"{SHOP_A}?page=2"]


@pytest.mark.asyncio
async def test_run_sites_skips_remaining_after_interrupt(memory_store):
    runner = CrawlRunner(memory_store, fetcher=FakeFetcher(site_pages()), page_delay=0, site_delay=5)
    control = CrawlControl()

    async def cancel_soon():
        await asyncio.sleep(0.05)
        control.cancel("shutting down")

    canceller = asyncio.create_task(cancel_soon())
    outcomes = await runner.run_sites(sites().all(), control=control)
    await canceller

    assert outcomes[0].success is True
    assert outcomes[1].success is False
    assert outcomes[1].error == "Skipped: shutting down"


@pytest.mark.asyncio
async def test_run_scheduled_only_due_sites(memory_store):
    runner = runner_for(memory_store, site_pages())
    registry = sites()
    registry.mark_run("b", utcnow() - timedelta(minutes=5))

    outcomes = await runner.run_scheduled(registry)

    assert [o.site for o in outcomes] == ["a"]
    assert registry.get("a").last_run is not None
    assert registry.needing_update() == []


@pytest.mark.asyncio
async def test_run_scheduled_force_runs_everything(memory_store):
    runner = runner_for(memory_store, site_pages())
    registry = sites()
    now = utcnow()
    for site in registry.all():
        registry.mark_run(site.key, now)

    assert await runner.run_scheduled(registry) == []
    outcomes = await runner.run_scheduled(registry, force=True)

    assert [o.site for o in outcomes] == ["a", "b"]
    assert all(o.success for o in outcomes)


def test_registry_rules():
    registry = sites()
    now = utcnow()

    assert len(registry) == 2
    assert [s.key for s in registry.needing_update(now)] == ["a", "b"]
    registry.mark_run("a", now)
    assert registry.get("a").next_run == now + timedelta(minutes=30)
    assert [s.key for s in registry.needing_update(now + timedelta(minutes=31))] == ["a", "b"]
    assert [s.key for s in registry.needing_update(now + timedelta(minutes=10))] == ["b"]

    registry.get("b").enabled = False
    assert [s.key for s in registry.enabled()] == ["a"]
    with pytest.raises(KeyError):
        registry.select(["missing"])
    with pytest.raises(KeyError):
        registry.mark_run("missing")


def test_default_registry_is_a_copy():
    first = SiteRegistry()
    first.mark_run("amnibus")

    assert SiteRegistry().get("amnibus").last_run is None
