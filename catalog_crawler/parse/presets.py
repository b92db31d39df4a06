"""Named extraction configs for well-known catalog layouts."""
import logging
from typing import Callable, Optional

from pydantic import ValidationError
from selectolax.parser import HTMLParser

from catalog_crawler.errors import ConfigError
from catalog_crawler.fetch.urls import validate_target_url
from catalog_crawler.parse.models import ExtractionConfig, PaginationConfig, SelectorSet

logger = logging.getLogger(__name__)


def generic(url: str) -> ExtractionConfig:
    return ExtractionConfig(
        target_url=url,
        selectors=SelectorSet(
            list_container='.products, .product-list, [class*="product"]',
            card='.product, article, [class*="product"]',
            title='h1, h2, h3, .title, [class*="title"]',
            price='.price, [class*="price"]',
            original_price='.original-price, .compare-price, [class*="compare"]',
            image='img, [class*="image"]',
            description='.description, [class*="description"]',
            availability='.availability, .stock, [class*="stock"]',
        ),
        pagination=PaginationConfig(
            next_page_selector='.next, [rel="next"], .pagination a:last-child',
            max_pages=3,
        ),
    )


def anime_store(url: str) -> ExtractionConfig:
    # Shopify theme; JSON-LD usually wins, the selectors cover collection grids
    return ExtractionConfig(
        target_url=url,
        site_name="Anime Store JP",
        selectors=SelectorSet(
            list_container=".collection-products, .product-collection",
            card=".product-collection",
            title=".product-collection__title",
            price=".product-collection__price",
            image=".product-collection__image img, .rimage__img, [data-master], [srcset]",
            description=".product-collection__content",
        ),
        pagination=PaginationConfig(
            next_page_selector='.pagination a[href*="?page="], .next[href*="?page="], a[href*="?page="]:last-child',
            max_pages=2,
        ),
    )


def amnibus(url: str) -> ExtractionConfig:
    return ExtractionConfig(
        target_url=url,
        site_name="Amnibus",
        selectors=SelectorSet(
            list_container='.product-list, .list-container, main, .products, .items, [class*="product"]',
            card='a[href*="/products/detail/"], .product-item, .item, [class*="product"], article',
            title='.list-name, .product-title, .title, h1, h2, h3, [class*="title"]',
            price='.list-price, .price, .amount, [class*="price"]',
            image='.list-image img, .product-image img, img, [class*="image"]',
            description='.list-description, .description, .summary, [class*="description"]',
        ),
        pagination=PaginationConfig(
            next_page_selector='a[href*="pageno="], .pagination a, .next, [rel="next"]',
            max_pages=3,
        ),
    )


def amazon(url: str) -> ExtractionConfig:
    return ExtractionConfig(
        target_url=url,
        site_name="Amazon",
        selectors=SelectorSet(
            list_container="#search .s-main-slot, .s-results",
            card=".s-result-item, .a-section",
            title="h2 a span, .a-text-normal",
            price=".a-price .a-offscreen, .a-color-price",
            original_price=".a-price .a-text-price",
            image=".a-dynamic-image, img",
            description=".a-text-normal",
        ),
    )


def ebay(url: str) -> ExtractionConfig:
    return ExtractionConfig(
        target_url=url,
        site_name="eBay",
        selectors=SelectorSet(
            list_container=".s-item",
            card=".s-item",
            title=".s-item__title",
            price=".s-item__price",
            image=".s-item__image img",
        ),
    )


def custom_template(url: str) -> ExtractionConfig:
    """Empty starting point for a hand-written config."""
    return ExtractionConfig(
        target_url=url,
        selectors=SelectorSet(),
        pagination=PaginationConfig(max_pages=2),
    )


PRESETS: dict[str, Callable[[str], ExtractionConfig]] = {
    "generic": generic,
    "animeStore": anime_store,
    "amnibus": amnibus,
    "amazon": amazon,
    "ebay": ebay,
    "customTemplate": custom_template,
}

# snake_case spellings accepted alongside the historical keys
PRESET_ALIASES = {
    "anime_store": "animeStore",
    "custom_template": "customTemplate",
}


def list_presets() -> list[str]:
    return list(PRESETS)


def get_preset(name: str, url: str) -> ExtractionConfig:
    """Build the named preset for url. Raises ConfigError for unknown names."""
    key = PRESET_ALIASES.get(name, name)
    factory = PRESETS.get(key)
    if factory is None:
        raise ConfigError(f"Invalid configuration type: {name}")
    return factory(url)


def validate_selectors(extraction_config: ExtractionConfig) -> None:
    """Compile every configured selector once; raise ConfigError on the first bad one."""
    probe = HTMLParser("<html><body></body></html>")
    values = dict(extraction_config.selectors)
    if extraction_config.pagination:
        values["next_page_selector"] = extraction_config.pagination.next_page_selector
    for field_name, selector in values.items():
        if not selector:
            continue
        try:
            probe.css(selector)
        except Exception as e:
            raise ConfigError(f"Invalid selector for {field_name}: {selector!r} ({e})") from e


def config_from_dict(target_url: str, data: dict) -> ExtractionConfig:
    """Build an ExtractionConfig from a caller-supplied dict.

    Accepts the nested form ({"selectors": {...}, "pagination": {...}}) or a
    flat bag of selector fields. Keys may be snake_case or camelCase.
    """
    if not isinstance(data, dict):
        raise ConfigError("Custom config must be an object")
    payload = dict(data)
    for key in ("url", "targetURL", "target_url"):
        payload.pop(key, None)
    if "selectors" not in payload:
        passthrough = {k: payload.pop(k) for k in ("pagination", "base_url", "baseUrl", "name", "site_name") if k in payload}
        payload = {"selectors": payload, **passthrough}
    try:
        return ExtractionConfig.model_validate({**payload, "target_url": target_url})
    except ValidationError as e:
        raise ConfigError(f"Malformed custom config: {e.errors()[0]['msg']}") from e


def resolve_config(
    target_url: str,
    config_name: Optional[str] = None,
    custom_config: Optional[dict] = None,
    site_name: Optional[str] = None,
) -> ExtractionConfig:
    """Turn invocation input into a validated ExtractionConfig.

    A custom config wins over a preset name; with neither, the generic preset
    is used. The target URL always overrides whatever the config carries.
    Raises ConfigError before anything is fetched.
    """
    validate_target_url(target_url)

    if custom_config is not None:
        extraction_config = config_from_dict(target_url, custom_config)
    else:
        extraction_config = get_preset(config_name or "generic", target_url)

    if site_name:
        extraction_config = extraction_config.model_copy(update={"site_name": site_name})

    validate_selectors(extraction_config)
    logger.debug(f"Resolved config for {target_url}: preset={config_name or ('custom' if custom_config else 'generic')}")
    return extraction_config
