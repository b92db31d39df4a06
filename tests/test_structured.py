"""Tests for JSON-LD product extraction."""
import pytest
from selectolax.parser import HTMLParser

from catalog_crawler.errors import ParseFailure
from catalog_crawler.parse.html_parser import ExtractionSettings
from catalog_crawler.parse.structured import (
    convert_price,
    decode_block,
    extract_structured,
    iter_entities,
    record_id,
)

from conftest import BASE, shop_config


def page(*blocks: str, body: str = "") -> HTMLParser:
    scripts = "".join(f'<script type="application/ld+json">{block}</script>' for block in blocks)
    return HTMLParser(f"<html><head>{scripts}</head><body>{body}</body></html>")


GUNDAM = """{
  "@context": "https://schema.org",
  "@type": "Product",
  "name": "Gundam Model RX-78",
  "image": "//cdn.shop.example/files/g_{width}x.jpg",
  "brand": {"@type": "Brand", "name": "Bandai"},
  "offers": {
    "@type": "Offer",
    "price": "3000",
    "priceCurrency": "JPY",
    "availability": "https://schema.org/InStock"
  }
}"""


def test_product_with_yen_price_is_converted():
    records = extract_structured(page(GUNDAM), BASE, shop_config())

    assert len(records) == 1
    record = records[0]
    assert record.title == "Gundam Model RX-78"
    assert record.price == 20.0
    assert record.brand == "Bandai"
    assert record.image_url == "https://cdn.shop.example/files/g_800x.jpg"
    assert record.image_source == "structured"
    assert record.availability == "in"
    assert record.id == record_id("Gundam Model RX-78", BASE)


def test_price_in_target_currency_is_kept():
    block = '{"@type": "Product", "name": "Lamp", "offers": {"price": 19.99, "priceCurrency": "USD"}}'

    records = extract_structured(page(block), BASE, shop_config())

    assert records[0].price == 19.99


def test_conversion_is_monotonic():
    settings = ExtractionSettings(conversion_rate=1 / 150, target_currency="USD")

    assert convert_price("1000", "JPY", settings) < convert_price("2000", "JPY", settings)
    assert convert_price("0", "JPY", settings) == 0.0


def test_malformed_block_does_not_hide_valid_one():
    records = extract_structured(page("{not json", GUNDAM), BASE, shop_config())

    assert [r.title for r in records] == ["Gundam Model RX-78"]


def test_decode_block_rejects_garbage():
    with pytest.raises(ParseFailure):
        decode_block("{oops")
    with pytest.raises(ParseFailure):
        decode_block("   ")


def test_graph_and_item_list_are_walked():
    data = {
        "@graph": [
            {"@type": "WebPage", "name": "Catalog"},
            {
                "@type": "ItemList",
                "itemListElement": [
                    {"@type": "ListItem", "item": {"@type": "Product", "name": "A"}},
                    {"@type": "ListItem", "item": {"@type": "Product", "name": "B"}},
                ],
            },
        ]
    }

    names = [e.get("name") for e in iter_entities(data) if e.get("@type") == "Product"]

    assert names == ["A", "B"]


def test_non_products_and_nameless_products_are_ignored():
    blocks = (
        '{"@type": "Organization", "name": "Shop"}',
        '{"@type": "Product", "name": "  "}',
        '{"@type": ["Product", "Thing"], "name": "Typed Twice"}',
    )

    records = extract_structured(page(*blocks), BASE, shop_config())

    assert [r.title for r in records] == ["Typed Twice"]


def test_out_of_stock_offer_marks_sold():
    block = (
        '{"@type": "Product", "name": "Rare Box", '
        '"offers": {"price": "100", "priceCurrency": "USD", "availability": "https://schema.org/OutOfStock"}}'
    )

    record = extract_structured(page(block), BASE, shop_config())[0]

    assert record.is_sold_out is True
    assert record.availability == "out"
    assert record.labels == ["Sold"]


def test_used_condition_is_reported():
    block = (
        '{"@type": "Product", "name": "Camera Body", '
        '"itemCondition": "https://schema.org/UsedCondition", "offers": {"price": "50"}}'
    )

    record = extract_structured(page(block), BASE, shop_config())[0]

    assert record.condition == "used"
    assert record.labels == ["Used"]


def test_image_matched_by_name_in_page():
    block = '{"@type": "Product", "name": "Gundam Model RX-78", "offers": {"price": "1"}}'
    body = (
        '<img src="/banner.jpg" alt="Summer sale">'
        '<img src="/g.jpg" alt="Gundam Model RX-78 front view">'
    )

    record = extract_structured(page(block, body=body), BASE, shop_config())[0]

    assert record.image_url == "https://shop.example/g.jpg"
    assert record.image_source == "name_match"


def test_image_falls_back_to_first_page_image():
    block = '{"@type": "Product", "name": "Mystery Item", "offers": {"price": "1"}}'
    body = '<img src="/logo.png" alt="Shop logo">'

    record = extract_structured(page(block, body=body), BASE, shop_config())[0]

    assert record.image_url == "https://shop.example/logo.png"
    assert record.image_source == "page_fallback"


def test_duplicate_products_collapse():
    records = extract_structured(page(GUNDAM, GUNDAM), BASE, shop_config())

    assert len(records) == 1
