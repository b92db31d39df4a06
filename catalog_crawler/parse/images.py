"""Image URL discovery for product cards."""
import logging
from typing import Optional

from selectolax.parser import Node

from catalog_crawler.config import config
from catalog_crawler.fetch.urls import get_origin, resolve_url
from catalog_crawler.parse.html_parser import css
from catalog_crawler.parse.models import ExtractionConfig

logger = logging.getLogger(__name__)

# 1x1 transparent GIF that lazy-loading themes put in src until JS swaps it out
PLACEHOLDER_GIF = "data:image/gif;base64,R0lGODlhAQABAIAAAP///wAAACwAAAAAAQABAAACAkQBADs="

WIDTH_TOKENS = ("{width}", "%7Bwidth%7D", "%7bwidth%7d")

# Tried after the configured image selector, most specific first
FALLBACK_IMAGE_SELECTORS = (
    "[data-master]",
    ".rimage__img",
    "[data-src]",
    "[data-original]",
    "[data-lazy]",
    "[data-srcset]",
    "[srcset]",
    ".product-image img",
    ".featured-image img",
    "img",
)

HIGH_RES_ATTRS = ("data-master", "data-zoom-image", "data-large-image")
LAZY_ATTRS = ("data-src", "data-original", "data-lazy", "data-lazy-src")
SRCSET_ATTRS = ("srcset", "data-srcset")


def first_srcset_url(srcset: str) -> str:
    """First candidate of a srcset, without its width/density descriptor."""
    first = srcset.split(",")[0].strip()
    return first.split()[0] if first else ""


def substitute_width(url: str, width: int = config.IMAGE_WIDTH) -> str:
    for token in WIDTH_TOKENS:
        if token in url:
            url = url.replace(token, str(width))
    return url


def is_placeholder(url: Optional[str]) -> bool:
    if not url:
        return True
    url = url.strip()
    return url == PLACEHOLDER_GIF or url.startswith("data:")


def normalize_image_url(raw: Optional[str], base_url: str, width: int = config.IMAGE_WIDTH) -> Optional[str]:
    """Turn a raw attribute value into an absolute image URL, or None."""
    if not raw:
        return None
    raw = raw.strip()
    if "," in raw and " " in raw:
        raw = first_srcset_url(raw)
    if is_placeholder(raw):
        return None
    url = substitute_width(raw, width)
    resolved = resolve_url(url, get_origin(base_url))
    if resolved is None:
        logger.warning(f"Failed to convert relative image URL: {url}")
    return resolved


def image_candidates(element: Node) -> list[str]:
    """Raw image references on one element, in attribute precedence order."""
    attrs = element.attributes
    candidates = []
    for name in HIGH_RES_ATTRS + LAZY_ATTRS:
        if attrs.get(name):
            candidates.append(attrs[name])
    for name in SRCSET_ATTRS:
        if attrs.get(name):
            candidates.append(first_srcset_url(attrs[name]))
    if attrs.get("src"):
        candidates.append(attrs["src"])
    return candidates


def image_from_element(element: Node, base_url: str, width: int = config.IMAGE_WIDTH) -> Optional[str]:
    for raw in image_candidates(element):
        url = normalize_image_url(raw, base_url, width)
        if url:
            return url
    return None


def resolve_image(
    card: Node,
    extraction_config: ExtractionConfig,
    width: int = config.IMAGE_WIDTH,
) -> Optional[str]:
    """Find the best image URL inside a product card.

    Returns None when nothing usable is found; a product without an image
    is not an error.
    """
    base_url = extraction_config.base_url or extraction_config.target_url
    selectors = [extraction_config.selectors.image, *FALLBACK_IMAGE_SELECTORS]

    for selector in selectors:
        for element in css(card, selector):
            url = image_from_element(element, base_url, width)
            if url:
                return url
    return None
