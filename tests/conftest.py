"""Shared fakes and page builders for the crawl tests."""
from typing import Optional, Union

import pytest

from catalog_crawler.errors import FailureKind, NetworkFailure
from catalog_crawler.parse.models import ExtractionConfig, PaginationConfig, SelectorSet
from catalog_crawler.store.memory import MemoryStore

BASE = "https://shop.example/catalog"


class FakeFetcher:
    """Serves canned markup per URL and records every fetch."""

    def __init__(self, pages: dict[str, Union[str, Exception]]):
        self.pages = pages
        self.calls: list[str] = []

    async def fetch(self, url: str) -> str:
        self.calls.append(url)
        page = self.pages.get(url)
        if page is None:
            raise NetworkFailure(FailureKind.OTHER, url, status_code=404, message="HTTP 404 Not Found")
        if isinstance(page, Exception):
            raise page
        return page

    async def aclose(self) -> None:
        pass


def forbidden(url: str) -> NetworkFailure:
    return NetworkFailure(FailureKind.FORBIDDEN, url, status_code=403, message="HTTP 403 Forbidden")


def card(title: Optional[str], price: Optional[str] = None, extra_class: str = "", image: str = "") -> str:
    classes = f"product {extra_class}".strip()
    parts = [f'<div class="{classes}">']
    if title is not None:
        parts.append(f'<h2 class="title">{title}</h2>')
    if price is not None:
        parts.append(f'<span class="price">{price}</span>')
    if image:
        parts.append(image)
    parts.append("</div>")
    return "".join(parts)


def catalog_page(cards: list[str], next_href: Optional[str] = None) -> str:
    next_link = f'<a class="next" href="{next_href}">Next</a>' if next_href is not None else ""
    return (
        "<html><body>"
        f'<div class="products">{"".join(cards)}</div>'
        f"{next_link}"
        "</body></html>"
    )


def structured_page(products: list[tuple[str, str]], currency: str = "JPY") -> str:
    """Page whose products are only described by one JSON-LD block."""
    items = ",".join(
        '{"@type": "Product", "name": "%s", "offers": {"price": "%s", "priceCurrency": "%s"}}'
        % (name, price, currency)
        for name, price in products
    )
    return f'<html><head><script type="application/ld+json">[{items}]</script></head><body></body></html>'


def shop_config(max_pages: int = 5, next_selector: Optional[str] = "a.next", **selectors) -> ExtractionConfig:
    values = {
        "list_container": ".products",
        "card": ".product",
        "title": ".title",
        "price": ".price",
        "image": "img",
    }
    values.update(selectors)
    return ExtractionConfig(
        target_url=BASE,
        site_name="Example Shop",
        selectors=SelectorSet(**values),
        pagination=PaginationConfig(next_page_selector=next_selector, max_pages=max_pages),
    )


@pytest.fixture
def memory_store():
    return MemoryStore()
