"""Parse catalog pages and run the layered extraction strategies."""
import itertools
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional

from selectolax.parser import HTMLParser, Node

from catalog_crawler.config import config
from catalog_crawler.fetch.urls import resolve_url
from catalog_crawler.parse.models import ExtractionConfig, ScrapedRecord

logger = logging.getLogger(__name__)

_CURRENCY_CHARS = re.compile(r"[$€£¥₹,]")
_NON_NUMERIC = re.compile(r"[^\d.\-]")
_LEADING_FLOAT = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)")


@dataclass
class ExtractionSettings:
    """Tunables shared by every extraction strategy."""

    image_width: int = config.IMAGE_WIDTH
    conversion_rate: float = config.JPY_TO_USD_RATE
    target_currency: str = config.TARGET_CURRENCY
    default_brand: str = config.DEFAULT_BRAND


@dataclass
class PageExtraction:
    """Records found on one page and the strategy that produced them."""

    records: list[ScrapedRecord] = field(default_factory=list)
    strategy: Optional[str] = None


def node_text(node: Optional[Node]) -> str:
    """Visible text of a node with whitespace collapsed."""
    if node is None:
        return ""
    return " ".join(node.text(separator=" ").split())


def css(node, selector: Optional[str]) -> list[Node]:
    """All matches of selector under node; [] if the selector is empty or invalid.

    A Node never matches itself, only its descendants.
    """
    if not selector:
        return []
    try:
        matches = node.css(selector)
    except Exception as e:
        logger.warning(f"Bad selector {selector!r}: {e}")
        return []
    if isinstance(node, Node):
        return [match for match in matches if match.mem_id != node.mem_id]
    return matches


def first_text(node, selector: Optional[str]) -> str:
    """Text of the first element matching selector that has any text."""
    for match in css(node, selector):
        text = node_text(match)
        if text:
            return text
    return ""


def unique_nodes(nodes: Iterable[Node]) -> list[Node]:
    """Drop repeated nodes, keeping document order of first appearance."""
    seen = set()
    result = []
    for node in nodes:
        if node.mem_id in seen:
            continue
        seen.add(node.mem_id)
        result.append(node)
    return result


def element_children(node: Node) -> Iterator[Node]:
    for child in node.iter(include_text=False):
        if child.tag and not child.tag.startswith(("-", "_")):
            yield child


def class_names(node: Node) -> str:
    """Lowercased class attributes of node and all of its descendants."""
    classes = []
    for element in unique_nodes([node, *css(node, "[class]")]):
        value = element.attributes.get("class")
        if value:
            classes.append(value.lower())
    return " ".join(classes)


def parse_price(price_text: Optional[str]) -> float:
    """Parse a displayed price into a float.

    Currency symbols and thousands separators are stripped, then the leading
    number is read. Anything unparseable is 0.0; negatives clamp to 0.0.
    """
    if not price_text:
        return 0.0
    cleaned = _NON_NUMERIC.sub("", _CURRENCY_CHARS.sub("", str(price_text))).strip()
    match = _LEADING_FLOAT.match(cleaned)
    if not match:
        return 0.0
    try:
        value = float(match.group(0))
    except ValueError:
        return 0.0
    return max(value, 0.0)


def find_next_url(tree: HTMLParser, selector: Optional[str], current_url: str) -> Optional[str]:
    """Absolute target of the first next-page link, or None."""
    for link in css(tree, selector):
        href = link.attributes.get("href")
        if not href:
            continue
        resolved = resolve_url(href, current_url)
        if resolved:
            return resolved
    return None


def extract_page(
    tree: HTMLParser,
    extraction_config: ExtractionConfig,
    page_url: str,
    id_counter: Optional[Iterator[int]] = None,
    settings: Optional[ExtractionSettings] = None,
) -> PageExtraction:
    """Run the extraction strategies in order and keep the first non-empty result.

    Order: embedded structured data, configured selectors, generic heuristics.
    A strategy that fails or finds nothing just hands over to the next one.
    """
    from catalog_crawler.parse.selector_extractor import extract_by_selectors, extract_generic
    from catalog_crawler.parse.structured import extract_structured

    settings = settings or ExtractionSettings()
    id_counter = id_counter if id_counter is not None else itertools.count(1)

    strategies = (
        ("structured", lambda: extract_structured(tree, page_url, extraction_config, settings)),
        ("selectors", lambda: extract_by_selectors(tree, extraction_config, page_url, id_counter, settings)),
        ("generic", lambda: extract_generic(tree, extraction_config, page_url, id_counter, settings)),
    )

    for name, strategy in strategies:
        try:
            records = strategy()
        except Exception as e:
            logger.warning(f"Extraction strategy {name} failed on {page_url}: {e}", exc_info=True)
            continue
        if records:
            logger.info(f"{len(records)} products from {page_url} via {name}")
            return PageExtraction(records=records, strategy=name)
        logger.debug(f"Strategy {name} found nothing on {page_url}")

    logger.info(f"No products found on {page_url}")
    return PageExtraction()
