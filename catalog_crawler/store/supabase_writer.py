"""Supabase product store with retries."""
import asyncio
import logging
from typing import Iterable, Optional
from supabase import create_client, Client
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from catalog_crawler.config import config
from catalog_crawler.parse.models import CrawlJob, JobMeta, PersistedProduct, ScrapedRecord
from catalog_crawler.store.base import (
    UpsertResult,
    apply_job_update,
    compute_stats,
    new_job,
    product_key,
    to_product,
)

logger = logging.getLogger(__name__)

_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type((Exception,)),
    reraise=True,
)


class SupabaseWriter:
    """Writes products and jobs to Supabase.

    The Supabase client is synchronous, so every call runs in the default
    thread pool. Upserts are serialized within this process; the existence
    check and the write are two requests.
    """

    def __init__(self, client: Optional[Client] = None):
        if client is None:
            if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE:
                raise ValueError("Supabase configuration missing")
            client = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE)
        self.client: Client = client
        self.products_table = config.SUPABASE_PRODUCTS_TABLE
        self.jobs_table = config.SUPABASE_JOBS_TABLE
        self._write_lock = asyncio.Lock()

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @_retry
    def _fetch_existing_sync(self, keys: list[str]) -> list[dict]:
        if not keys:
            return []
        response = self.client.table(self.products_table).select("*").in_("id", keys).execute()
        return response.data or []

    @_retry
    def _upsert_sync(self, data: list[dict]) -> None:
        """Synchronous upsert (called from thread pool)."""
        self.client.table(self.products_table).upsert(data, on_conflict="id").execute()

    async def upsert_batch(
        self,
        records: list[ScrapedRecord],
        source_site: str,
        job_id: Optional[str] = None,
    ) -> UpsertResult:
        if not records:
            return UpsertResult(0, 0)

        async with self._write_lock:
            keys = list(dict.fromkeys(product_key(r.source_url, r.title) for r in records))
            try:
                rows = await self._run(self._fetch_existing_sync, keys)
            except Exception as e:
                logger.error(f"Supabase lookup error: {e}")
                raise
            existing = {row["id"]: PersistedProduct.model_validate(row) for row in rows}

            added = updated = 0
            products: dict[str, PersistedProduct] = {}
            for record in records:
                key = product_key(record.source_url, record.title)
                previous = products.get(key) or existing.get(key)
                products[key] = to_product(record, source_site, job_id, previous)
                if previous is None:
                    added += 1
                else:
                    updated += 1

            data = [product.model_dump(mode="json") for product in products.values()]
            try:
                await self._run(self._upsert_sync, data)
            except Exception as e:
                logger.error(f"Supabase upsert error: {e}")
                raise

        logger.info(f"Upserted {len(records)} products to Supabase ({added} added, {updated} updated)")
        return UpsertResult(added, updated)

    @_retry
    def _insert_job_sync(self, row: dict) -> None:
        self.client.table(self.jobs_table).insert(row).execute()

    @_retry
    def _get_job_sync(self, job_id: str) -> list[dict]:
        response = self.client.table(self.jobs_table).select("*").eq("id", job_id).limit(1).execute()
        return response.data or []

    @_retry
    def _update_job_sync(self, job_id: str, row: dict) -> None:
        self.client.table(self.jobs_table).update(row).eq("id", job_id).execute()

    async def create_job(self, meta: JobMeta) -> str:
        job = new_job(meta)
        await self._run(self._insert_job_sync, job.model_dump(mode="json"))
        return job.id

    async def get_job(self, job_id: str) -> Optional[CrawlJob]:
        rows = await self._run(self._get_job_sync, job_id)
        return CrawlJob.model_validate(rows[0]) if rows else None

    async def update_job(self, job_id: str, **fields) -> CrawlJob:
        job = await self.get_job(job_id)
        if job is None:
            raise KeyError(job_id)
        job = apply_job_update(job, fields)
        await self._run(self._update_job_sync, job_id, job.model_dump(mode="json"))
        return job

    @_retry
    def _list_jobs_sync(self, limit: int) -> list[dict]:
        response = (
            self.client.table(self.jobs_table)
            .select("*")
            .order("started_at", desc=True)
            .limit(limit)
            .execute()
        )
        return response.data or []

    async def list_jobs(self, limit: int = 20) -> list[CrawlJob]:
        rows = await self._run(self._list_jobs_sync, limit)
        return [CrawlJob.model_validate(row) for row in rows]

    @_retry
    def _list_products_sync(self, filters: dict, limit: Optional[int]) -> list[dict]:
        query = self.client.table(self.products_table).select("*")
        for column, value in filters.items():
            query = query.eq(column, value)
        query = query.order("last_updated", desc=True)
        if limit is not None:
            query = query.limit(limit)
        return query.execute().data or []

    async def list_products(
        self,
        source_site: Optional[str] = None,
        availability: Optional[str] = None,
        is_active: Optional[bool] = None,
        limit: int = 100,
    ) -> list[PersistedProduct]:
        filters = {
            column: value
            for column, value in (("source_site", source_site), ("availability", availability), ("is_active", is_active))
            if value is not None
        }
        rows = await self._run(self._list_products_sync, filters, limit)
        return [PersistedProduct.model_validate(row) for row in rows]

    @_retry
    def _deactivate_sync(self, keys: list[str]) -> list[dict]:
        response = (
            self.client.table(self.products_table)
            .update({"is_active": False})
            .in_("id", keys)
            .eq("is_active", True)
            .execute()
        )
        return response.data or []

    async def mark_inactive(self, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        rows = await self._run(self._deactivate_sync, keys)
        return len(rows)

    async def get_stats(self) -> dict:
        rows = await self._run(self._list_products_sync, {}, None)
        return compute_stats(PersistedProduct.model_validate(row) for row in rows)
