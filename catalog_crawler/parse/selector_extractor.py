"""Selector-driven product extraction, with a generic last-resort pass."""
import logging
from collections import Counter
from typing import Iterator, Optional

from selectolax.parser import HTMLParser, Node

from catalog_crawler.parse.condition import classify
from catalog_crawler.parse.html_parser import (
    ExtractionSettings,
    css,
    element_children,
    first_text,
    parse_price,
    unique_nodes,
)
from catalog_crawler.parse.images import resolve_image
from catalog_crawler.parse.models import ExtractionConfig, ScrapedRecord, SelectorSet

logger = logging.getLogger(__name__)

DEFAULT_CARD_SELECTOR = ".product, [class*=\"product\"], article"

GENERIC_CANDIDATES = (
    'div[class*="product"], div[class*="item"], article, a[href*="product"], '
    'a[href*="item"], [class*="card"], [class*="grid"] > *'
)
GENERIC_SELECTORS = SelectorSet(
    title='h1, h2, h3, h4, h5, h6, .title, [class*="title"], .name, [class*="name"]',
    price='.price, [class*="price"], .amount, [class*="amount"], .cost, [class*="cost"]',
    image='img, [class*="image"] img, [data-src], [data-lazy]',
)
GENERIC_CANDIDATE_LIMIT = 20
GENERIC_RECORD_LIMIT = 5


def drop_nested_cards(cards: list[Node], title_selector: Optional[str]) -> list[Node]:
    """Keep the titled cards, settling cards found inside other cards.

    A titled card inside another titled card is dropped, unless that outer
    card holds two or more titled cards: then it is a wrapper around a grid
    and the outer one goes instead.
    """
    titled = [card for card in cards if first_text(card, title_selector)]
    ids = {card.mem_id for card in titled}

    enclosing: dict[int, Optional[int]] = {}
    inner_counts: Counter = Counter()
    for card in titled:
        parent = card.parent
        while parent is not None and parent.mem_id not in ids:
            parent = parent.parent
        enclosing[card.mem_id] = parent.mem_id if parent is not None else None
        if parent is not None:
            inner_counts[parent.mem_id] += 1
    wrappers = {mem_id for mem_id, count in inner_counts.items() if count >= 2}

    kept = []
    for card in titled:
        if card.mem_id in wrappers:
            continue
        outer = enclosing[card.mem_id]
        while outer is not None and outer in wrappers:
            outer = enclosing[outer]
        if outer is None:
            kept.append(card)
    return kept


def find_cards(tree: HTMLParser, selectors: SelectorSet) -> list[Node]:
    """Candidate product cards for a selector set.

    With a list container, cards are the container's matches of the card
    selector (or its direct children when no card selector is set). A
    container that itself matches the card selector is a card too. Without a
    container, or when it is missing, the card selector is applied to the
    whole document. Only cards with a title are returned, see
    drop_nested_cards.
    """
    card_ids = {node.mem_id for node in css(tree, selectors.card)}
    cards: list[Node] = []
    for container in unique_nodes(css(tree, selectors.list_container)):
        if container.mem_id in card_ids:
            cards.append(container)
        if selectors.card:
            cards.extend(css(container, selectors.card))
        else:
            cards.extend(element_children(container))
    if not cards:
        cards = css(tree, selectors.card or DEFAULT_CARD_SELECTOR)
    return drop_nested_cards(unique_nodes(cards), selectors.title)


def card_record(
    card: Node,
    extraction_config: ExtractionConfig,
    selectors: SelectorSet,
    page_url: str,
    id_counter: Iterator[int],
    settings: ExtractionSettings,
) -> Optional[ScrapedRecord]:
    """Build a record from one card, or None when it has no title.

    Only accepted cards draw an id from id_counter.
    """
    title = first_text(card, selectors.title)
    if not title:
        return None

    price = parse_price(first_text(card, selectors.price))
    original_price = parse_price(first_text(card, selectors.original_price)) or None
    description = first_text(card, selectors.description) or None
    availability_text = first_text(card, selectors.availability) or None

    image_config = extraction_config
    if selectors is not extraction_config.selectors:
        image_config = extraction_config.model_copy(update={"selectors": selectors})
    image_url = resolve_image(card, image_config, settings.image_width)

    classification = classify(card, title, description, extra_text=availability_text)

    return ScrapedRecord(
        id=f"scraped_{next(id_counter)}",
        title=title,
        price=price,
        original_price=original_price,
        brand=extraction_config.site_name or settings.default_brand,
        image_url=image_url,
        image_source="card" if image_url else None,
        description=description,
        availability=classification.availability,
        source_url=page_url,
        condition=classification.condition,
        is_sold_out=classification.is_sold_out,
        labels=classification.labels,
    )


def _collect(
    cards: list[Node],
    extraction_config: ExtractionConfig,
    selectors: SelectorSet,
    page_url: str,
    id_counter: Iterator[int],
    settings: ExtractionSettings,
    limit: Optional[int] = None,
) -> list[ScrapedRecord]:
    records: list[ScrapedRecord] = []
    skipped = 0
    for index, card in enumerate(cards):
        try:
            record = card_record(card, extraction_config, selectors, page_url, id_counter, settings)
        except Exception as e:
            logger.warning(f"Skipping card {index} on {page_url}: {e}")
            continue
        if record is None:
            skipped += 1
            continue
        records.append(record)
        if limit is not None and len(records) >= limit:
            break
    if skipped:
        logger.debug(f"{skipped} cards without a title on {page_url}")
    return records


def extract_by_selectors(
    tree: HTMLParser,
    extraction_config: ExtractionConfig,
    page_url: str,
    id_counter: Iterator[int],
    settings: Optional[ExtractionSettings] = None,
) -> list[ScrapedRecord]:
    """Products found with the configured selectors."""
    settings = settings or ExtractionSettings()
    selectors = extraction_config.selectors
    cards = find_cards(tree, selectors)
    logger.debug(f"{len(cards)} candidate cards on {page_url}")
    return _collect(cards, extraction_config, selectors, page_url, id_counter, settings)


def extract_generic(
    tree: HTMLParser,
    extraction_config: ExtractionConfig,
    page_url: str,
    id_counter: Iterator[int],
    settings: Optional[ExtractionSettings] = None,
) -> list[ScrapedRecord]:
    """Low-confidence pass over anything that looks like a product tile.

    Looks at no more than GENERIC_CANDIDATE_LIMIT elements and accepts at
    most GENERIC_RECORD_LIMIT records.
    """
    settings = settings or ExtractionSettings()
    candidates = drop_nested_cards(unique_nodes(css(tree, GENERIC_CANDIDATES)), GENERIC_SELECTORS.title)
    candidates = candidates[:GENERIC_CANDIDATE_LIMIT]
    records = _collect(
        candidates,
        extraction_config,
        GENERIC_SELECTORS,
        page_url,
        id_counter,
        settings,
        limit=GENERIC_RECORD_LIMIT,
    )
    if records:
        logger.info(f"Generic pass accepted {len(records)} of {len(candidates)} candidates on {page_url}")
    return records
