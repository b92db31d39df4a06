"""Persistence contract shared by every product store."""
import hashlib
import uuid
from datetime import datetime
from typing import Iterable, NamedTuple, Optional, Protocol
from urllib.parse import urlparse

from catalog_crawler.config import config
from catalog_crawler.parse.models import (
    CrawlJob,
    JobMeta,
    PersistedProduct,
    ScrapedRecord,
    TERMINAL_STATUSES,
    utcnow,
)

KEY_PREFIX = "p_"
KEY_LENGTH = 16

# Allowed status moves; terminal statuses accept nothing
JOB_TRANSITIONS = {
    "pending": {"pending", "running", "failed"},
    "running": {"running", "completed", "failed"},
}

JOB_UPDATE_FIELDS = {
    "status",
    "products_scraped",
    "products_added",
    "products_updated",
    "pages_fetched",
    "failed_pages",
    "error_message",
    "completed_at",
    "duration_seconds",
    "end_page",
}


class UpsertResult(NamedTuple):
    added: int
    updated: int


def product_key(source_url: str, title: str) -> str:
    """Deterministic identity of a product.

    Built from the lowercased origin and path of the source URL (query and
    fragment ignored, so ?page=N variants share a key) plus the title.
    """
    parsed = urlparse(source_url.strip())
    location = f"{parsed.scheme}://{parsed.netloc}{parsed.path}".lower()
    identity = f"{location}_{title.strip()}".lower()
    return KEY_PREFIX + hashlib.sha256(identity.encode("utf-8")).hexdigest()[:KEY_LENGTH]


def to_product(
    record: ScrapedRecord,
    source_site: str,
    job_id: Optional[str] = None,
    existing: Optional[PersistedProduct] = None,
    now: Optional[datetime] = None,
) -> PersistedProduct:
    """Stored form of a scraped record.

    scraped_at and is_active carry over from an existing product; the crawl
    never reactivates a product that was soft-deleted.
    """
    now = now or utcnow()
    return PersistedProduct(
        id=product_key(record.source_url, record.title),
        title=record.title,
        price=record.price,
        original_price=record.original_price,
        brand=record.brand or config.DEFAULT_BRAND,
        category=record.category or config.DEFAULT_CATEGORY,
        image_url=record.image_url,
        description=record.description,
        availability=record.availability,
        source_url=record.source_url,
        source_site=source_site,
        condition=record.condition,
        is_sold_out=record.is_sold_out,
        labels=list(record.labels),
        scraped_at=existing.scraped_at if existing else now,
        last_updated=now,
        scraping_job_id=job_id,
        is_active=existing.is_active if existing else True,
    )


def new_job(meta: JobMeta) -> CrawlJob:
    return CrawlJob(
        id=str(uuid.uuid4()),
        status="pending",
        source_site=meta.source_site,
        source_url=meta.source_url,
        start_page=meta.start_page,
        end_page=meta.end_page,
        triggered_by=meta.triggered_by,
    )


def apply_job_update(job: CrawlJob, fields: dict, now: Optional[datetime] = None) -> CrawlJob:
    """Return job with fields applied. Raises ValueError on an illegal update.

    A terminal job never changes again. Moving to a terminal status stamps
    completed_at when the caller did not.
    """
    if job.status in TERMINAL_STATUSES:
        raise ValueError(f"Job {job.id} is already {job.status}")
    unknown = set(fields) - JOB_UPDATE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update job fields: {', '.join(sorted(unknown))}")

    status = fields.get("status", job.status)
    if status not in JOB_TRANSITIONS[job.status]:
        raise ValueError(f"Job {job.id} cannot move from {job.status} to {status}")

    update = dict(fields)
    if status in TERMINAL_STATUSES and not update.get("completed_at"):
        update["completed_at"] = now or utcnow()
    return CrawlJob.model_validate({**job.model_dump(), **update})


def compute_stats(products: Iterable[PersistedProduct]) -> dict:
    """Totals over a product collection."""
    total = active = in_stock = out_of_stock = 0
    last_scraped: Optional[datetime] = None
    by_site: dict[str, int] = {}
    for product in products:
        total += 1
        by_site[product.source_site] = by_site.get(product.source_site, 0) + 1
        if product.is_active:
            active += 1
        if product.availability == "in":
            in_stock += 1
        else:
            out_of_stock += 1
        if last_scraped is None or product.last_updated > last_scraped:
            last_scraped = product.last_updated
    return {
        "total": total,
        "active": active,
        "in_stock": in_stock,
        "out_of_stock": out_of_stock,
        "by_site": by_site,
        "last_scraped": last_scraped.isoformat() if last_scraped else None,
    }


def filter_products(
    products: Iterable[PersistedProduct],
    source_site: Optional[str] = None,
    availability: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> list[PersistedProduct]:
    result = []
    for product in products:
        if source_site is not None and product.source_site != source_site:
            continue
        if availability is not None and product.availability != availability:
            continue
        if is_active is not None and product.is_active != is_active:
            continue
        result.append(product)
    return result


class ProductStore(Protocol):
    """What the crawl pipeline needs from storage."""

    async def initialize(self) -> None: ...

    async def close(self) -> None: ...

    async def upsert_batch(
        self,
        records: list[ScrapedRecord],
        source_site: str,
        job_id: Optional[str] = None,
    ) -> UpsertResult: ...

    async def create_job(self, meta: JobMeta) -> str: ...

    async def update_job(self, job_id: str, **fields) -> CrawlJob: ...

    async def get_job(self, job_id: str) -> Optional[CrawlJob]: ...

    async def list_jobs(self, limit: int = 20) -> list[CrawlJob]: ...

    async def list_products(
        self,
        source_site: Optional[str] = None,
        availability: Optional[str] = None,
        is_active: Optional[bool] = None,
        limit: int = 100,
    ) -> list[PersistedProduct]: ...

    async def mark_inactive(self, keys: Iterable[str]) -> int: ...

    async def get_stats(self) -> dict: ...
