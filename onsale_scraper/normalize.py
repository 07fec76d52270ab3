"""Text and price normalization for scraped listing cards.

Every function here is total: malformed input yields ``None`` fields rather
than an exception, so a single odd card can never abort a page.
"""
from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import NamedTuple
from urllib.parse import quote, urldefrag, urljoin, urlparse

from .models import CanonicalRecord, RawItemFragment

_LEADING_NUMBER = re.compile(r"\d+(?:\.\d*)?|\.\d+")
_UNIT_PRICE = re.compile(
    r"(?:[$€£]\s*)?(\d+(?:[.,]\d+)?)\s*(?:[$€£¢])?\s*(?:/|\bper\b)\s*([\d.,]*\s*[^\s\d.,;()]+)",
    re.IGNORECASE,
)
_LABELLED_SKU = re.compile(r"(?:code|sku|produit|item|article)\s*:?\s*([0-9]{3,})", re.IGNORECASE)
_BARE_SKU = re.compile(r"\b([0-9]{3,})\b")
# characters encodeURIComponent leaves untouched
_ANCHOR_SAFE = "-_.!~*'()"


class PricePair(NamedTuple):
    sale: float | None
    regular: float | None


class UnitPrice(NamedTuple):
    unit_price: float | None
    unit_label: str | None


def normalize_whitespace(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = " ".join(str(value).split())
    return normalized or None


def parse_number(text: str | None) -> float | None:
    if not text:
        return None
    cleaned = re.sub(r"\s+", "", str(text)).replace("$", "").replace(",", ".")
    cleaned = re.sub(r"[^0-9.]", "", cleaned)
    match = _LEADING_NUMBER.match(cleaned)
    if not match:
        return None
    value = float(match.group(0))
    return value if math.isfinite(value) else None


def parse_price_candidates(texts: list[str | None]) -> PricePair:
    prices = sorted(value for value in (parse_number(text) for text in texts) if value is not None)
    if not prices:
        return PricePair(None, None)
    sale = prices[0]
    regular = prices[-1] if prices[-1] != sale else None
    return PricePair(sale, regular)


def parse_unit_price_text(text: str | None) -> UnitPrice:
    match = _UNIT_PRICE.search(normalize_whitespace(text) or "")
    if not match:
        return UnitPrice(None, None)
    label = normalize_whitespace(match.group(2).strip(" .;)("))
    return UnitPrice(parse_number(match.group(1)), label)


def normalize_price_pair(sale: float | None, regular: float | None) -> PricePair:
    if regular is None:
        return PricePair(None, sale)
    if sale is None or sale == regular:
        return PricePair(None, regular)
    if sale > regular:
        sale, regular = regular, sale
    return PricePair(sale, regular)


def extract_sku(card_text: str | None) -> str | None:
    if not card_text:
        return None
    match = _LABELLED_SKU.search(card_text) or _BARE_SKU.search(card_text)
    return match.group(1) if match else None


def resolve_url(maybe_url: str | None, base_url: str) -> str | None:
    if not maybe_url:
        return None
    value = maybe_url.strip()
    if not value or value.startswith("#") or value.lower().startswith("javascript:"):
        return None
    absolute = urljoin(base_url, value)
    if urlparse(absolute).scheme not in {"http", "https"}:
        return None
    return absolute


def build_fallback_url(sku: str | None, name: str | None, base_url: str) -> str:
    base, _ = urldefrag(base_url)
    anchor = sku or name
    if not anchor:
        return base
    slug = re.sub(r"\s+", "-", anchor.strip())[:80]
    return f"{base}#{quote(slug, safe=_ANCHOR_SAFE)}"


def to_canonical_record(
    fragment: RawItemFragment,
    *,
    source: str,
    query: str,
    page_url: str,
    page_category: str | None = None,
    scraped_at: str | None = None,
) -> CanonicalRecord:
    name = normalize_whitespace(fragment.name)
    sku = normalize_whitespace(fragment.sku) or extract_sku(fragment.card_text)

    candidates = parse_price_candidates([*fragment.price_texts, *fragment.regular_texts])
    prices = normalize_price_pair(candidates.sale, candidates.regular)

    unit = parse_unit_price_text(fragment.unit_price_text)
    unit_price = unit.unit_price if unit.unit_price is not None else parse_number(fragment.unit_price_text)
    unit_label = normalize_whitespace(fragment.unit_label) or unit.unit_label

    return CanonicalRecord(
        source=source,
        query=query,
        name=name,
        brand=normalize_whitespace(fragment.brand),
        sku=sku,
        price_sale=prices.sale,
        price_regular=prices.regular,
        unit_label=unit_label,
        unit_price=unit_price,
        url=resolve_url(fragment.link, page_url) or build_fallback_url(sku, name, page_url),
        image=resolve_url(fragment.image, page_url),
        category=normalize_whitespace(fragment.category) or page_category,
        scraped_at=scraped_at or datetime.now(timezone.utc).isoformat(),
    )
