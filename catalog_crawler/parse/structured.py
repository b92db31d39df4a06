"""Extract products from embedded JSON-LD structured data."""
import hashlib
import json
import logging
from typing import Any, Iterator, Optional

from selectolax.parser import HTMLParser

from catalog_crawler.errors import ParseFailure
from catalog_crawler.parse.condition import classify
from catalog_crawler.parse.html_parser import ExtractionSettings, css, node_text, parse_price
from catalog_crawler.parse.images import image_from_element, normalize_image_url
from catalog_crawler.parse.models import ExtractionConfig, ScrapedRecord

logger = logging.getLogger(__name__)

STRUCTURED_SELECTOR = 'script[type="application/ld+json"]'
NAME_PREFIX_LENGTH = 20
PAGE_FALLBACK_SCAN = 10
RECORD_ID_LENGTH = 16

OUT_OF_STOCK_MARKERS = ("outofstock", "soldout", "discontinued")
USED_CONDITION_MARKERS = ("usedcondition", "damagedcondition")


def record_id(name: str, source_url: str) -> str:
    """Stable short id for a structured-data product."""
    return hashlib.sha256(f"{name}{source_url}".encode("utf-8")).hexdigest()[:RECORD_ID_LENGTH]


def decode_block(text: Optional[str]) -> Any:
    """Parse one JSON-LD block. Raises ParseFailure on malformed content."""
    if not text or not text.strip():
        raise ParseFailure("empty structured-data block")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseFailure(f"malformed structured-data block: {e}") from e


def iter_entities(data: Any) -> Iterator[dict]:
    """Walk a decoded block: arrays, @graph containers and ItemList wrappers."""
    if isinstance(data, list):
        for item in data:
            yield from iter_entities(item)
        return
    if not isinstance(data, dict):
        return
    yield data
    if isinstance(data.get("@graph"), list):
        yield from iter_entities(data["@graph"])
    elements = data.get("itemListElement")
    if isinstance(elements, list):
        for element in elements:
            if isinstance(element, dict) and isinstance(element.get("item"), dict):
                yield from iter_entities(element["item"])
            elif isinstance(element, dict) and element.get("@type") != "ListItem":
                yield from iter_entities(element)


def _types(entity: dict) -> list[str]:
    value = entity.get("@type")
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str)]
    return []


def is_product(entity: dict) -> bool:
    name = entity.get("name")
    return "Product" in _types(entity) and isinstance(name, str) and bool(name.strip())


def _first_offer(entity: dict) -> dict:
    offers = entity.get("offers")
    if isinstance(offers, list):
        offers = next((o for o in offers if isinstance(o, dict)), None)
    if isinstance(offers, dict) and isinstance(offers.get("offers"), list):
        # AggregateOffer wrapping concrete offers
        inner = next((o for o in offers["offers"] if isinstance(o, dict)), None)
        if inner and "price" not in offers and "lowPrice" not in offers:
            return inner
    return offers if isinstance(offers, dict) else {}


def convert_price(value: Any, currency: Optional[str], settings: ExtractionSettings) -> float:
    """Normalize an offer price to the target currency.

    Prices that carry a currency code other than the target are treated as
    JPY and converted with the configured rate.
    """
    if isinstance(value, bool):
        return 0.0
    amount = max(float(value), 0.0) if isinstance(value, (int, float)) else parse_price(value)
    if currency and currency.strip().upper() != settings.target_currency.upper():
        amount = round(amount * settings.conversion_rate, 2)
    return amount


def _structured_image(entity: dict) -> Optional[str]:
    image = entity.get("image")
    if isinstance(image, list):
        image = image[0] if image else None
    if isinstance(image, dict):
        image = image.get("url") or image.get("contentUrl")
    return image if isinstance(image, str) else None


def _text_field(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("name")
    if isinstance(value, list):
        value = next((v for v in value if isinstance(v, str)), None)
    if isinstance(value, str) and value.strip():
        return " ".join(value.split())
    return None


def find_page_image(
    tree: HTMLParser,
    name: str,
    base_url: str,
    width: int,
) -> tuple[Optional[str], Optional[str]]:
    """Best-effort image for a product whose structured data has none.

    First looks for an image whose alt text or parent text contains the start
    of the product name; otherwise takes the first usable image among the
    first few on the page. Both are heuristics and can pick the wrong image.
    """
    prefix = name[:NAME_PREFIX_LENGTH].lower().strip()
    images = css(tree, "img")

    if prefix:
        for img in images:
            alt = (img.attributes.get("alt") or "").lower()
            parent_text = node_text(img.parent).lower() if img.parent is not None else ""
            if prefix in alt or prefix in parent_text:
                url = image_from_element(img, base_url, width)
                if url:
                    return url, "name_match"

    for img in images[:PAGE_FALLBACK_SCAN]:
        url = image_from_element(img, base_url, width)
        if url:
            return url, "page_fallback"
    return None, None


def build_record(
    entity: dict,
    tree: HTMLParser,
    page_url: str,
    extraction_config: ExtractionConfig,
    settings: ExtractionSettings,
) -> ScrapedRecord:
    name = " ".join(entity["name"].split())
    base_url = extraction_config.base_url or page_url
    offer = _first_offer(entity)

    price = convert_price(offer.get("price", offer.get("lowPrice")), offer.get("priceCurrency"), settings)

    image_url = normalize_image_url(_structured_image(entity), base_url, settings.image_width)
    image_source = "structured" if image_url else None
    if not image_url:
        image_url, image_source = find_page_image(tree, name, base_url, settings.image_width)
        if image_url:
            logger.debug(f"Image for {name[:40]!r} taken from page markup ({image_source}); may be misattributed")

    description = _text_field(entity.get("description"))
    classification = classify(None, name, description)

    availability_value = str(offer.get("availability") or "").lower().replace("_", "")
    if any(marker in availability_value for marker in OUT_OF_STOCK_MARKERS):
        classification.mark_sold_out()
    item_condition = str(entity.get("itemCondition") or offer.get("itemCondition") or "").lower()
    if "refurbishedcondition" in item_condition:
        classification.mark_condition("refurbished")
    elif any(marker in item_condition for marker in USED_CONDITION_MARKERS):
        classification.mark_condition("used")

    return ScrapedRecord(
        id=record_id(name, page_url),
        title=name,
        price=price,
        brand=_text_field(entity.get("brand")) or extraction_config.site_name or settings.default_brand,
        category=_text_field(entity.get("category")),
        image_url=image_url,
        image_source=image_source,
        description=description,
        availability=classification.availability,
        source_url=page_url,
        condition=classification.condition,
        is_sold_out=classification.is_sold_out,
        labels=classification.labels,
    )


def extract_structured(
    tree: HTMLParser,
    page_url: str,
    extraction_config: ExtractionConfig,
    settings: Optional[ExtractionSettings] = None,
) -> list[ScrapedRecord]:
    """Products described by JSON-LD blocks on the page.

    A malformed block or product entry is logged and skipped.
    """
    settings = settings or ExtractionSettings()
    records: list[ScrapedRecord] = []
    seen_ids: set[str] = set()

    for index, script in enumerate(css(tree, STRUCTURED_SELECTOR)):
        try:
            data = decode_block(script.text())
        except ParseFailure as e:
            logger.warning(f"Skipping structured-data block {index} on {page_url}: {e}")
            continue

        for entity in iter_entities(data):
            if not is_product(entity):
                continue
            try:
                record = build_record(entity, tree, page_url, extraction_config, settings)
            except Exception as e:
                logger.warning(f"Skipping structured product on {page_url}: {e}")
                continue
            if record.id in seen_ids:
                continue
            seen_ids.add(record.id)
            records.append(record)

    logger.debug(f"{len(records)} structured products on {page_url}")
    return records
