"""Data models for extraction configs, scraped records and crawl jobs."""
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

Availability = Literal["in", "out"]
Condition = Literal["new", "used", "refurbished"]
JobStatus = Literal["pending", "running", "completed", "failed"]
TriggeredBy = Literal["cron", "manual", "api"]
ImageSource = Literal["structured", "name_match", "page_fallback", "card"]

TERMINAL_STATUSES = ("completed", "failed")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SelectorSet(BaseModel):
    """CSS selectors for one site shape. Each value may be a comma-joined list."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    list_container: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("list_container", "listContainer", "productList")
    )
    card: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("card", "cardSelector", "productCard")
    )
    title: Optional[str] = None
    price: Optional[str] = None
    original_price: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("original_price", "originalPrice")
    )
    image: Optional[str] = None
    description: Optional[str] = None
    availability: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("availability", "availabilitySelector")
    )

    @field_validator("*", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value


class PaginationConfig(BaseModel):
    """Link-following pagination settings."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    next_page_selector: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("next_page_selector", "nextPageSelector")
    )
    max_pages: int = Field(default=1, ge=1, validation_alias=AliasChoices("max_pages", "maxPages"))

    @field_validator("next_page_selector", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ExtractionConfig(BaseModel):
    """Immutable extraction settings for one crawl invocation."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    target_url: str = Field(validation_alias=AliasChoices("target_url", "targetURL", "url"))
    selectors: SelectorSet = Field(default_factory=SelectorSet)
    pagination: Optional[PaginationConfig] = None
    base_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("base_url", "baseUrl"))
    site_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("site_name", "name"))


class PageRange(BaseModel):
    """Explicit start/end page indexes for range-batch crawling (inclusive)."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=1)
    end: int = Field(ge=1)

    @model_validator(mode="after")
    def _check_order(self):
        if self.end < self.start:
            raise ValueError(f"end page {self.end} is before start page {self.start}")
        return self

    @property
    def count(self) -> int:
        return self.end - self.start + 1


class ScrapedRecord(BaseModel):
    """One product extracted from a catalog page."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    price: float = Field(default=0.0, ge=0)
    original_price: Optional[float] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None
    image_source: Optional[ImageSource] = None
    description: Optional[str] = None
    availability: Availability = "in"
    source_url: str
    condition: Optional[Condition] = None
    is_sold_out: bool = False
    labels: list[str] = Field(default_factory=list)


class PersistedProduct(BaseModel):
    """Stored shape of a scraped product, keyed by product_key(source_url, title)."""

    id: str
    title: str
    price: float = 0.0
    original_price: Optional[float] = None
    brand: str
    category: str
    image_url: Optional[str] = None
    description: Optional[str] = None
    availability: Availability = "in"
    source_url: str
    source_site: str
    condition: Optional[Condition] = None
    is_sold_out: bool = False
    labels: list[str] = Field(default_factory=list)

    scraped_at: datetime
    last_updated: datetime
    scraping_job_id: Optional[str] = None
    is_active: bool = True


class JobMeta(BaseModel):
    """Fields supplied when a crawl job is created."""

    source_site: str
    source_url: str
    start_page: int = 1
    end_page: int = 1
    triggered_by: TriggeredBy = "api"


class CrawlJob(BaseModel):
    """Provenance record for one crawl invocation."""

    id: str
    status: JobStatus = "pending"
    source_site: str
    source_url: str
    start_page: int = 1
    end_page: int = 1

    products_scraped: int = 0
    products_added: int = 0
    products_updated: int = 0
    pages_fetched: int = 0
    failed_pages: list[str] = Field(default_factory=list)
    error_message: Optional[str] = None

    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    triggered_by: TriggeredBy = "api"
    duration_seconds: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
