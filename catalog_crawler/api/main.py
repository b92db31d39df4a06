"""FastAPI main application."""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field

from catalog_crawler.config import Config, config
from catalog_crawler.errors import ConfigError, CrawlFailed
from catalog_crawler.jobs.runner import CrawlRequest, CrawlRunner, SiteOutcome
from catalog_crawler.jobs.sites import SiteRegistry
from catalog_crawler.parse.presets import get_preset, list_presets
from catalog_crawler.store.base import ProductStore
from catalog_crawler.store.factory import create_store

logger = logging.getLogger(__name__)

app = FastAPI(title="Catalog Crawler API", version="0.1.0")
app.state.registry = SiteRegistry()
app.state.store = None
app.state.store_lock = asyncio.Lock()

# API Key security (if configured)
API_KEY_HEADER = APIKeyHeader(name="X-API-KEY", auto_error=False)

STATUS_BY_KIND = {
    "timeout": 408,
    "forbidden": 502,
    "rate-limited": 502,
    "other": 502,
    "persistence": 500,
}


def verify_api_key(api_key: str = Depends(API_KEY_HEADER)) -> bool:
    """Verify API key if configured."""
    expected_key = config.API_KEY
    if expected_key:
        if not api_key or api_key != expected_key:
            raise HTTPException(status_code=403, detail="Invalid API key")
    return True


def verify_cron_secret(authorization: Optional[str] = Header(default=None)) -> bool:
    """Cron callers send `Authorization: Bearer <CRON_SECRET>`."""
    provided = (authorization or "").removeprefix("Bearer ").strip()
    if not config.CRON_SECRET or provided != config.CRON_SECRET:
        logger.error("Unauthorized cron job attempt")
        raise HTTPException(status_code=401, detail="Unauthorized")
    return True


async def get_store(request: Request) -> ProductStore:
    """The app's store, created and initialized on first use."""
    state = request.app.state
    async with state.store_lock:
        if state.store is None:
            store = create_store()
            await store.initialize()
            state.store = store
    return state.store


async def get_runner(store: ProductStore = Depends(get_store)) -> AsyncIterator[CrawlRunner]:
    runner = CrawlRunner(store, stop_after_seconds=config.STOP_AFTER_SECONDS)
    try:
        yield runner
    finally:
        await runner.aclose()


def get_registry(request: Request) -> SiteRegistry:
    return request.app.state.registry


@app.exception_handler(ConfigError)
async def config_error_handler(request: Request, exc: ConfigError):
    return JSONResponse(status_code=400, content={"error": str(exc), "kind": "config"})


@app.exception_handler(CrawlFailed)
async def crawl_failed_handler(request: Request, exc: CrawlFailed):
    status = STATUS_BY_KIND.get(exc.kind or "", 500)
    return JSONResponse(status_code=status, content=exc.to_dict())


class ScrapeBody(BaseModel):
    """Request model for a single crawl."""

    model_config = ConfigDict(populate_by_name=True)

    url: str
    config_type: str = Field(default="generic", alias="configType")
    custom_config: Optional[dict] = Field(default=None, alias="customConfig")
    start_page: Optional[int] = Field(default=None, alias="startPage")
    end_page: Optional[int] = Field(default=None, alias="endPage")
    max_pages: Optional[int] = Field(default=None, alias="maxPages")
    site_name: Optional[str] = Field(default=None, alias="siteName")


class CronBody(BaseModel):
    """Request model for the cron trigger."""

    model_config = ConfigDict(populate_by_name=True)

    sites: list[str] = Field(default_factory=lambda: ["amnibus"])
    pages_per_site: Optional[int] = Field(default=3, ge=1, alias="pagesPerSite")
    concurrent: bool = False


def _summarize(outcomes: list[SiteOutcome], started: float) -> dict:
    succeeded = [o for o in outcomes if o.success]
    total = sum(o.products_scraped for o in outcomes)
    return {
        "success": True,
        "message": f"Scraped {total} products from {len(succeeded)} websites",
        "websitesUpdated": len(succeeded),
        "websitesFailed": len(outcomes) - len(succeeded),
        "totalProducts": total,
        "duration": round(time.monotonic() - started, 2),
        "results": [o.to_dict() for o in outcomes],
    }


@app.get("/health")
async def health():
    """Health check endpoint (no auth required)."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "store": config.STORE_BACKEND,
    }


@app.get("/scrape/configs")
async def scrape_configs():
    """Available preset names and a sample config."""
    return {
        "configs": list_presets(),
        "sampleConfig": get_preset("generic", "https://example.com").model_dump(mode="json"),
    }


@app.post("/scrape")
async def scrape(
    body: ScrapeBody,
    runner: CrawlRunner = Depends(get_runner),
    _: bool = Depends(verify_api_key),
):
    """Crawl one URL with a preset or custom config and persist the products."""
    request = CrawlRequest(
        target_url=body.url,
        config_name=body.config_type,
        custom_config=body.custom_config,
        start_page=body.start_page,
        end_page=body.end_page,
        max_pages=body.max_pages,
        site_name=body.site_name,
        triggered_by="api",
    )
    result = await runner.run(request)
    logger.info(f"Successfully scraped {len(result.records)} products from {body.url}")
    return result.to_dict()


@app.post("/cron/scrape")
async def cron_scrape(
    body: Optional[CronBody] = None,
    runner: CrawlRunner = Depends(get_runner),
    registry: SiteRegistry = Depends(get_registry),
    _: bool = Depends(verify_cron_secret),
):
    """Crawl the requested registry sites; called by an external scheduler."""
    body = body or CronBody()
    started = time.monotonic()
    logger.info(f"[CRON] Starting scheduled scraping job for {body.sites}")

    known, outcomes = [], []
    for key in body.sites:
        site = registry.get(key)
        if site is None:
            logger.warning(f"Unknown site: {key}")
            outcomes.append(SiteOutcome(site=key, name=key, url="", success=False, error=f"Unknown site: {key}"))
        else:
            known.append(site)

    outcomes.extend(await runner.run_sites(known, body.pages_per_site, concurrent=body.concurrent))
    for outcome in outcomes:
        if outcome.success:
            registry.mark_run(outcome.site)
    return _summarize(outcomes, started)


@app.api_route("/scrape/scheduled", methods=["GET", "POST"])
async def scrape_scheduled(
    force: bool = False,
    runner: CrawlRunner = Depends(get_runner),
    registry: SiteRegistry = Depends(get_registry),
    _: bool = Depends(verify_api_key),
):
    """Crawl registry sites whose interval has elapsed (all enabled ones with force=true)."""
    started = time.monotonic()
    outcomes = await runner.run_scheduled(registry, force=force)
    if not outcomes:
        return {
            "success": True,
            "message": "No websites need updating at this time",
            "websitesChecked": 0,
            "totalProducts": 0,
        }
    return _summarize(outcomes, started)


@app.get("/jobs")
async def list_jobs(
    limit: int = 20,
    store: ProductStore = Depends(get_store),
    _: bool = Depends(verify_api_key),
):
    jobs = await store.list_jobs(limit=limit)
    return {"jobs": [job.model_dump(mode="json") for job in jobs]}


@app.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    store: ProductStore = Depends(get_store),
    _: bool = Depends(verify_api_key),
):
    job = await store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.model_dump(mode="json")


@app.get("/products")
async def list_products(
    source_site: Optional[str] = None,
    availability: Optional[str] = None,
    is_active: Optional[bool] = None,
    limit: int = 100,
    store: ProductStore = Depends(get_store),
    _: bool = Depends(verify_api_key),
):
    products = await store.list_products(
        source_site=source_site, availability=availability, is_active=is_active, limit=limit
    )
    return {"products": [p.model_dump(mode="json") for p in products], "count": len(products)}


@app.get("/products/stats")
async def product_stats(
    store: ProductStore = Depends(get_store),
    _: bool = Depends(verify_api_key),
):
    return await store.get_stats()


if __name__ == "__main__":
    import uvicorn
    from catalog_crawler.logging_conf import setup_logging

    setup_logging()
    Config.validate(require_supabase=config.STORE_BACKEND == "supabase")
    uvicorn.run(app, host="0.0.0.0", port=8000)
