"""Tests for product image resolution."""
from selectolax.parser import HTMLParser

from catalog_crawler.parse.images import (
    PLACEHOLDER_GIF,
    first_srcset_url,
    normalize_image_url,
    resolve_image,
    substitute_width,
)

from conftest import shop_config

PAGE = "https://shop.example/catalog/list"


def card_node(inner: str):
    return HTMLParser(f'<div class="product">{inner}</div>').css_first("div.product")


def resolve(inner: str, **selectors):
    config = shop_config(**selectors).model_copy(update={"target_url": PAGE})
    return resolve_image(card_node(inner), config)


def test_placeholder_only_card_has_no_image():
    assert resolve(f'<img src="{PLACEHOLDER_GIF}">') is None


def test_lazy_attribute_beats_placeholder_src():
    url = resolve(f'<img src="{PLACEHOLDER_GIF}" data-src="/files/real.jpg">')

    assert url == "https://shop.example/files/real.jpg"


def test_high_res_attribute_preferred():
    url = resolve('<img data-master="/files/big.jpg" data-src="/files/small.jpg" src="/files/tiny.jpg">')

    assert url == "https://shop.example/files/big.jpg"


def test_width_placeholder_is_substituted():
    url = resolve('<img data-src="//cdn.shop.example/p_{width}x.jpg">')

    assert url == "https://cdn.shop.example/p_800x.jpg"


def test_encoded_width_placeholder_is_substituted():
    assert substitute_width("https://cdn.example/p_%7Bwidth%7Dx.jpg", 640) == "https://cdn.example/p_640x.jpg"


def test_srcset_first_candidate():
    url = resolve('<img srcset="/a_400.jpg 400w, /a_800.jpg 800w">')

    assert url == "https://shop.example/a_400.jpg"
    assert first_srcset_url(" /x.jpg 1x, /y.jpg 2x") == "/x.jpg"


def test_relative_path_resolves_against_origin():
    assert normalize_image_url("img/a.jpg", PAGE) == "https://shop.example/img/a.jpg"


def test_fallback_selectors_used_when_configured_one_misses():
    url = resolve('<span class="pic"><img src="/files/p.png"></span>', image=".photo")

    assert url == "https://shop.example/files/p.png"


def test_base_url_overrides_target_origin():
    config = shop_config().model_copy(update={"base_url": "https://cdn.example/"})

    url = resolve_image(card_node('<img src="/p.jpg">'), config)

    assert url == "https://cdn.example/p.jpg"


def test_card_without_images():
    assert resolve("<h2>No picture</h2>") is None
