"""Sold-out and second-hand detection."""
import re
from dataclasses import dataclass, field
from typing import Optional

from selectolax.parser import Node

from catalog_crawler.parse.html_parser import class_names, node_text

SOLD_OUT_KEYWORDS = (
    "sold out", "soldout", "out of stock", "out-of-stock", "unavailable", "not available",
    "discontinued", "no longer available", "currently unavailable", "oos", "sold",
    "agotado", "épuisé", "ausverkauft", "esaurito",
)
# No word boundaries in Japanese text; these match as plain substrings
SOLD_OUT_CJK = ("品切れ", "売り切れ", "在庫切れ", "完売")
USED_KEYWORDS = (
    "used", "second hand", "second-hand", "pre-owned", "preowned", "usado", "d'occasion",
    "gebraucht", "usagé", "de segunda mano",
)
USED_CJK = ("中古",)
REFURBISHED_KEYWORDS = ("refurbished", "renewed", "reconditioned", "reacondicionado", "reconditionné")

SOLD_OUT_CLASSES = ("out-of-stock", "sold-out", "soldout", "unavailable")
USED_CLASSES = ("used", "second-hand", "pre-owned")

SOLD_LABEL = "Sold"
USED_LABEL = "Used"


def _keyword_pattern(keywords: tuple[str, ...], edge: str = r"\w") -> re.Pattern:
    # Whole-word match so "oos" does not fire on "choose" nor "used" on "unused"
    alternatives = "|".join(re.escape(k) for k in sorted(keywords, key=len, reverse=True))
    return re.compile(rf"(?<!{edge})(?:{alternatives})(?!{edge})")


_SOLD_OUT_RE = _keyword_pattern(SOLD_OUT_KEYWORDS)
_USED_RE = _keyword_pattern(USED_KEYWORDS)
_REFURBISHED_RE = _keyword_pattern(REFURBISHED_KEYWORDS)
# Class tokens are hyphenated, so "product--sold-out" matches but "focused" does not
_SOLD_OUT_CLASS_RE = _keyword_pattern(SOLD_OUT_CLASSES, edge="[a-z0-9]")
_USED_CLASS_RE = _keyword_pattern(USED_CLASSES, edge="[a-z0-9]")


def _has_signal(corpus: str, pattern: re.Pattern, cjk: tuple[str, ...] = ()) -> bool:
    return bool(pattern.search(corpus)) or any(k in corpus for k in cjk)


@dataclass
class Classification:
    availability: str = "in"
    condition: Optional[str] = None
    is_sold_out: bool = False
    labels: list[str] = field(default_factory=list)

    def add_label(self, label: str) -> None:
        if label not in self.labels:
            self.labels.append(label)

    def mark_sold_out(self) -> None:
        self.availability = "out"
        self.is_sold_out = True
        self.add_label(SOLD_LABEL)

    def mark_condition(self, condition: str) -> None:
        # refurbished is the more specific signal and is never downgraded
        if self.condition != "refurbished":
            self.condition = condition
        self.add_label(USED_LABEL)


def classify(
    element: Optional[Node],
    title: str,
    description: Optional[str] = None,
    extra_text: Optional[str] = None,
) -> Classification:
    """Detect sold-out and used/refurbished signals for one product.

    Text signals come from the element text, title, description and any extra
    text (e.g. an availability badge). Class-name signals are checked on their
    own, so a card can be sold out by markup alone. Labels accumulate.
    """
    result = Classification()

    parts = [node_text(element), title or "", description or "", extra_text or ""]
    corpus = " ".join(parts).lower()

    if _has_signal(corpus, _SOLD_OUT_RE, SOLD_OUT_CJK):
        result.mark_sold_out()
    if _has_signal(corpus, _REFURBISHED_RE):
        result.mark_condition("refurbished")
    elif _has_signal(corpus, _USED_RE, USED_CJK):
        result.mark_condition("used")

    if element is not None:
        classes = class_names(element)
        if _SOLD_OUT_CLASS_RE.search(classes):
            result.mark_sold_out()
        if _USED_CLASS_RE.search(classes):
            result.mark_condition("used")

    return result
