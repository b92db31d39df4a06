"""Registry of catalog sites crawled on a schedule."""
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Iterable, Optional

from catalog_crawler.parse.models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class WebsiteConfig:
    key: str
    name: str
    url: str
    preset: str
    enabled: bool = True
    schedule_enabled: bool = True
    interval_minutes: int = 30
    max_pages: Optional[int] = None
    last_run: Optional[datetime] = None

    @property
    def next_run(self) -> Optional[datetime]:
        if self.last_run is None:
            return None
        return self.last_run + timedelta(minutes=self.interval_minutes)

    def is_due(self, now: datetime) -> bool:
        if not (self.enabled and self.schedule_enabled):
            return False
        return self.next_run is None or now >= self.next_run


DEFAULT_SITES = (
    WebsiteConfig(key="amnibus", name="Amnibus", url="https://amnibus.com/products/list", preset="amnibus"),
    WebsiteConfig(
        key="animeStore",
        name="Anime Store JP",
        url="https://anime-store.jp/collections/newitems",
        preset="animeStore",
    ),
)


class SiteRegistry:
    """Caller-owned set of sites and their last run times."""

    def __init__(self, sites: Optional[Iterable[WebsiteConfig]] = None):
        source = DEFAULT_SITES if sites is None else sites
        # copies, so marking a run never touches the module defaults
        self._sites: dict[str, WebsiteConfig] = {site.key: replace(site) for site in source}

    def __len__(self) -> int:
        return len(self._sites)

    def all(self) -> list[WebsiteConfig]:
        return list(self._sites.values())

    def get(self, key: str) -> Optional[WebsiteConfig]:
        return self._sites.get(key)

    def add(self, site: WebsiteConfig) -> None:
        if site.key in self._sites:
            logger.info(f"Replacing site config {site.key}")
        self._sites[site.key] = site

    def remove(self, key: str) -> bool:
        return self._sites.pop(key, None) is not None

    def enabled(self) -> list[WebsiteConfig]:
        return [site for site in self._sites.values() if site.enabled]

    def needing_update(self, now: Optional[datetime] = None) -> list[WebsiteConfig]:
        """Enabled, scheduled sites whose interval has elapsed (or that never ran)."""
        now = now or utcnow()
        return [site for site in self._sites.values() if site.is_due(now)]

    def mark_run(self, key: str, now: Optional[datetime] = None) -> None:
        site = self._sites.get(key)
        if site is None:
            raise KeyError(key)
        site.last_run = now or utcnow()
        logger.debug(f"{site.name} next run at {site.next_run}")

    def select(self, keys: Optional[Iterable[str]]) -> list[WebsiteConfig]:
        """Enabled sites for the given keys (all enabled sites when keys is None).

        Unknown keys raise KeyError.
        """
        if keys is None:
            return self.enabled()
        selected = []
        for key in keys:
            site = self._sites.get(key)
            if site is None:
                raise KeyError(key)
            if site.enabled:
                selected.append(site)
        return selected
