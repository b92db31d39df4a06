"""In-memory product store for tests and dry runs."""
import asyncio
import logging
from collections import defaultdict
from typing import Iterable, Optional

from catalog_crawler.parse.models import CrawlJob, JobMeta, PersistedProduct, ScrapedRecord
from catalog_crawler.store.base import (
    UpsertResult,
    apply_job_update,
    compute_stats,
    filter_products,
    new_job,
    product_key,
    to_product,
)

logger = logging.getLogger(__name__)


class MemoryStore:
    """Product and job storage held by the instance that owns it.

    Nothing here is module-level: two stores never share state.
    """

    def __init__(self):
        self.products: dict[str, PersistedProduct] = {}
        self.jobs: dict[str, CrawlJob] = {}
        self.upsert_calls: list[int] = []
        self._key_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._job_lock = asyncio.Lock()

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def upsert_one(self, record: ScrapedRecord, source_site: str, job_id: Optional[str] = None) -> bool:
        """Insert or update one record. Returns True when it was added."""
        key = product_key(record.source_url, record.title)
        async with self._key_locks[key]:
            existing = self.products.get(key)
            self.products[key] = to_product(record, source_site, job_id, existing)
            return existing is None

    async def upsert_batch(
        self,
        records: list[ScrapedRecord],
        source_site: str,
        job_id: Optional[str] = None,
    ) -> UpsertResult:
        self.upsert_calls.append(len(records))
        added = updated = 0
        for record in records:
            if await self.upsert_one(record, source_site, job_id):
                added += 1
            else:
                updated += 1
        logger.info(f"Upserted {len(records)} products ({added} added, {updated} updated)")
        return UpsertResult(added, updated)

    async def create_job(self, meta: JobMeta) -> str:
        job = new_job(meta)
        self.jobs[job.id] = job
        return job.id

    async def update_job(self, job_id: str, **fields) -> CrawlJob:
        async with self._job_lock:
            job = self.jobs.get(job_id)
            if job is None:
                raise KeyError(job_id)
            self.jobs[job_id] = apply_job_update(job, fields)
            return self.jobs[job_id]

    async def get_job(self, job_id: str) -> Optional[CrawlJob]:
        return self.jobs.get(job_id)

    async def list_jobs(self, limit: int = 20) -> list[CrawlJob]:
        jobs = sorted(self.jobs.values(), key=lambda job: job.started_at, reverse=True)
        return jobs[:limit]

    async def list_products(
        self,
        source_site: Optional[str] = None,
        availability: Optional[str] = None,
        is_active: Optional[bool] = None,
        limit: int = 100,
    ) -> list[PersistedProduct]:
        products = filter_products(self.products.values(), source_site, availability, is_active)
        products.sort(key=lambda product: product.last_updated, reverse=True)
        return products[:limit]

    async def mark_inactive(self, keys: Iterable[str]) -> int:
        count = 0
        for key in keys:
            product = self.products.get(key)
            if product is not None and product.is_active:
                self.products[key] = product.model_copy(update={"is_active": False})
                count += 1
        return count

    async def get_stats(self) -> dict:
        return compute_stats(self.products.values())
