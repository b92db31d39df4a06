"""SQLite product store."""
import asyncio
import aiosqlite
import logging
import orjson
from pathlib import Path
from typing import Iterable, Optional

from catalog_crawler.config import STATE_DB
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


def _dump(model) -> bytes:
    return orjson.dumps(model.model_dump(mode="json"))


class StateDB:
    """SQLite database holding scraped products and crawl jobs.

    Rows keep indexed columns for filtering plus the full model as JSON.
    Each batch upsert runs in one IMMEDIATE transaction, so the
    exists-then-write check for a key is never interleaved with another
    writer.
    """

    def __init__(self, db_path: Path = STATE_DB):
        self.db_path = db_path
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS products (
                    key TEXT PRIMARY KEY,
                    source_site TEXT NOT NULL,
                    availability TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    last_updated TIMESTAMP NOT NULL,
                    data TEXT NOT NULL
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    started_at TIMESTAMP NOT NULL,
                    data TEXT NOT NULL
                )
                """
            )
            await db.execute("CREATE INDEX IF NOT EXISTS idx_products_site ON products(source_site)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_jobs_started ON jobs(started_at)")
            await db.commit()
            logger.info(f"State database initialized at {self.db_path}")

    async def close(self) -> None:
        pass

    async def upsert_batch(
        self,
        records: list[ScrapedRecord],
        source_site: str,
        job_id: Optional[str] = None,
    ) -> UpsertResult:
        added = updated = 0
        async with self._write_lock, aiosqlite.connect(self.db_path) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                for record in records:
                    key = product_key(record.source_url, record.title)
                    cursor = await db.execute("SELECT data FROM products WHERE key = ?", (key,))
                    row = await cursor.fetchone()
                    existing = PersistedProduct.model_validate(orjson.loads(row[0])) if row else None
                    product = to_product(record, source_site, job_id, existing)
                    await db.execute(
                        """
                        INSERT OR REPLACE INTO products (key, source_site, availability, is_active, last_updated, data)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            key,
                            product.source_site,
                            product.availability,
                            int(product.is_active),
                            product.last_updated.isoformat(),
                            _dump(product).decode(),
                        ),
                    )
                    if existing is None:
                        added += 1
                    else:
                        updated += 1
                await db.commit()
            except Exception:
                await db.rollback()
                raise
        logger.info(f"Upserted {len(records)} products ({added} added, {updated} updated)")
        return UpsertResult(added, updated)

    async def create_job(self, meta: JobMeta) -> str:
        job = new_job(meta)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT INTO jobs (id, status, started_at, data) VALUES (?, ?, ?, ?)",
                (job.id, job.status, job.started_at.isoformat(), _dump(job).decode()),
            )
            await db.commit()
        return job.id

    async def update_job(self, job_id: str, **fields) -> CrawlJob:
        async with self._write_lock, aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT data FROM jobs WHERE id = ?", (job_id,))
            row = await cursor.fetchone()
            if row is None:
                raise KeyError(job_id)
            job = apply_job_update(CrawlJob.model_validate(orjson.loads(row[0])), fields)
            await db.execute(
                "UPDATE jobs SET status = ?, data = ? WHERE id = ?",
                (job.status, _dump(job).decode(), job_id),
            )
            await db.commit()
            return job

    async def get_job(self, job_id: str) -> Optional[CrawlJob]:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT data FROM jobs WHERE id = ?", (job_id,))
            row = await cursor.fetchone()
            return CrawlJob.model_validate(orjson.loads(row[0])) if row else None

    async def list_jobs(self, limit: int = 20) -> list[CrawlJob]:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT data FROM jobs ORDER BY started_at DESC LIMIT ?", (limit,))
            return [CrawlJob.model_validate(orjson.loads(row[0])) for row in await cursor.fetchall()]

    async def list_products(
        self,
        source_site: Optional[str] = None,
        availability: Optional[str] = None,
        is_active: Optional[bool] = None,
        limit: int = 100,
    ) -> list[PersistedProduct]:
        clauses, params = [], []
        if source_site is not None:
            clauses.append("source_site = ?")
            params.append(source_site)
        if availability is not None:
            clauses.append("availability = ?")
            params.append(availability)
        if is_active is not None:
            clauses.append("is_active = ?")
            params.append(int(is_active))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                f"SELECT data FROM products {where} ORDER BY last_updated DESC LIMIT ?",
                (*params, limit),
            )
            return [PersistedProduct.model_validate(orjson.loads(row[0])) for row in await cursor.fetchall()]

    async def mark_inactive(self, keys: Iterable[str]) -> int:
        count = 0
        async with self._write_lock, aiosqlite.connect(self.db_path) as db:
            for key in keys:
                cursor = await db.execute("SELECT data FROM products WHERE key = ? AND is_active = 1", (key,))
                row = await cursor.fetchone()
                if row is None:
                    continue
                product = PersistedProduct.model_validate(orjson.loads(row[0])).model_copy(update={"is_active": False})
                await db.execute(
                    "UPDATE products SET is_active = 0, data = ? WHERE key = ?",
                    (_dump(product).decode(), key),
                )
                count += 1
            await db.commit()
        return count

    async def get_stats(self) -> dict:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT data FROM products")
            rows = await cursor.fetchall()
        return compute_stats(PersistedProduct.model_validate(orjson.loads(row[0])) for row in rows)

    async def delete_jobs_before(self, cutoff_iso: str) -> int:
        """Remove jobs started before cutoff. Used by maintenance scripts."""
        async with self._write_lock, aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM jobs WHERE started_at < ?", (cutoff_iso,))
            await db.commit()
            return cursor.rowcount

    async def clear_products(self, source_site: Optional[str] = None) -> int:
        async with self._write_lock, aiosqlite.connect(self.db_path) as db:
            if source_site is None:
                cursor = await db.execute("DELETE FROM products")
            else:
                cursor = await db.execute("DELETE FROM products WHERE source_site = ?", (source_site,))
            await db.commit()
            return cursor.rowcount

    async def product_keys(self, source_site: str) -> list[str]:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT key FROM products WHERE source_site = ?", (source_site,))
            return [row[0] for row in await cursor.fetchall()]
