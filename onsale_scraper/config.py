from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping

from dotenv import load_dotenv

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


@dataclass
class SelectorConfig:
    """Ordered selector lists; within each list the first non-empty match wins."""

    container: list[str] = field(default_factory=lambda: ["#product-container"])
    cards: list[str] = field(
        default_factory=lambda: ["#product-container .card-wrapper", ".product-card", "article.product"]
    )
    name: list[str] = field(
        default_factory=lambda: [".product-title", ".product-name", ".title", "h2", "h3", "a[title]"]
    )
    brand: list[str] = field(default_factory=lambda: [".product-brand", ".brand", ".manufacturer"])
    sku_attributes: list[str] = field(default_factory=lambda: ["data-sku", "data-product-sku", "data-product-id"])
    price: list[str] = field(
        default_factory=lambda: [
            ".price--sale",
            ".price-sale",
            ".special-price",
            ".sale-price",
            ".product-price",
            ".price",
            ".pricing",
            ".value",
        ]
    )
    regular_price: list[str] = field(default_factory=lambda: ["del", "s", ".price--regular", ".regular-price"])
    unit_label: list[str] = field(default_factory=lambda: [".unit", ".unit-label", ".product-unit", ".unitLabel"])
    unit_price: list[str] = field(
        default_factory=lambda: [".unit-price", ".unit-price-ref", ".price-per-unit", ".unitPrice"]
    )
    link: list[str] = field(default_factory=lambda: ["a[href]"])
    image_attributes: list[str] = field(default_factory=lambda: ["src", "data-src", "data-lazy"])
    category: list[str] = field(default_factory=lambda: [".category", ".product-category"])
    breadcrumb: list[str] = field(default_factory=lambda: ["nav.breadcrumb", ".breadcrumb", ".breadcrumbs"])
    pagination_links: list[str] = field(
        default_factory=lambda: [
            ".pagination a",
            "nav.pagination a",
            ".pager a",
            ".pagination-link",
            ".pagination__link",
            ".pagination button",
        ]
    )
    # next-control vocabulary is only matched inside these
    pagination_container: list[str] = field(
        default_factory=lambda: [".pagination", "nav.pagination", ".pager", "nav[aria-label*='pagination' i]"]
    )
    next_control: list[str] = field(
        default_factory=lambda: ["a[rel='next']", ".pagination-next a", ".pager-next a", ".pagination__next"]
    )
    next_vocabulary: list[str] = field(
        default_factory=lambda: ["next", "suivant", "suivante", "prochain", "prochaine"]
    )
    active_page: list[str] = field(
        default_factory=lambda: [
            ".pagination .active",
            ".pagination [aria-current='page']",
            "[aria-current='page']",
            ".pagination__link--active",
            ".pagination .is-active",
        ]
    )
    loader: list[str] = field(
        default_factory=lambda: [
            ".loading",
            ".loader",
            ".spinner",
            ".is-loading",
            "[aria-busy='true']",
            "[data-loading='true']",
            ".skeleton",
            ".skeleton-loader",
        ]
    )
    empty_state: list[str] = field(
        default_factory=lambda: [".no-results", ".empty", ".results-empty", ".search-empty", "[data-testid='no-results']"]
    )
    empty_state_pattern: str = (
        # a bare count of zero, not the trailing zero of "120 résultats"
        r"(Aucun résultat[^.]*|(?<![\d.,])0\s*résultat[^.]*|Aucun produit[^.]*"
        r"|No results[^.]*|(?<![\d.,])0\s*results[^.]*)"
    )
    results_count: list[str] = field(
        default_factory=lambda: [".results-count", ".search-result-count", ".product-count", ".count"]
    )
    consent: list[str] = field(
        default_factory=lambda: [
            "#onetrust-accept-btn-handler",
            "button[aria-label*='Accept']",
            "button[aria-label*='Accepter']",
            "button:has-text('Tout accepter')",
            "button:has-text('Accepter')",
            "button:has-text('Accept')",
        ]
    )
    detail_brand: list[str] = field(default_factory=lambda: [".product-brand", ".brand", "[itemprop='brand']"])
    detail_sku: list[str] = field(default_factory=lambda: ["[itemprop='sku']", ".product-sku", ".sku"])
    detail_category: list[str] = field(default_factory=lambda: ["nav.breadcrumb", ".breadcrumb", ".breadcrumbs"])
    detail_image: list[str] = field(
        default_factory=lambda: ["meta[property='og:image']", ".product-image img", "img[itemprop='image']"]
    )


@dataclass
class ScraperConfig:
    base_url: str = "https://mayrand.ca/fr/page-recherche"
    source: str = "mayrand"
    queries: list[str] = field(default_factory=lambda: ["onsale", "solde", "promo"])
    query_param: str = "search"
    page_param: str = "page"
    output_dir: Path = Path("public/mayrand/onsale")
    debug_dir: Path = Path("outputs/debug")
    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    locale: str = "fr-CA"
    viewport_width: int = 1365
    viewport_height: int = 768
    storage_state: Path | None = None
    wait_until: str = "networkidle"
    page_timeout_ms: int = 45000
    page_retry_count: int = 2
    retry_delay_ms: int = 1000
    page_limit: int = 100
    poll_attempts: int = 10
    poll_min_delay_ms: int = 500
    poll_max_delay_ms: int = 1500
    settle_ms: int = 200
    page_delay_ms: int = 500
    page_jitter_ms: int = 700
    enrich_details: bool = False
    enrich_workers: int = 3
    enrich_max_delay_ms: int = 800
    selectors: SelectorConfig = field(default_factory=SelectorConfig)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _coerce(current: Any, raw: str) -> Any:
    if isinstance(current, bool):
        return _env_bool(raw)
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, list):
        return [part.strip() for part in raw.split(",") if part.strip()]
    if isinstance(current, Path) or current is None:
        return Path(raw) if raw else None
    return raw


def load_config(env: Mapping[str, str] | None = None, dotenv: bool = True) -> ScraperConfig:
    """Defaults, overridden by ``SCRAPER_<FIELD>`` environment variables."""
    if dotenv:
        load_dotenv()
    env = os.environ if env is None else env
    config = ScraperConfig()
    overrides: dict[str, Any] = {}
    for item in fields(ScraperConfig):
        if item.name == "selectors":
            continue
        raw = env.get(f"SCRAPER_{item.name.upper()}")
        if raw is None:
            continue
        overrides[item.name] = _coerce(getattr(config, item.name), raw)
    return replace(config, **overrides)


def load_selectors(path: Path, base: SelectorConfig | None = None) -> SelectorConfig:
    base = base or SelectorConfig()
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Selector file {path} must contain a JSON object")
    known = {item.name for item in fields(SelectorConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown selector keys in {path}: {', '.join(unknown)}")
    updates: dict[str, Any] = {}
    for key, value in data.items():
        if key == "empty_state_pattern":
            updates[key] = str(value)
        elif isinstance(value, str):
            updates[key] = [value]
        else:
            updates[key] = [str(entry) for entry in value]
    return replace(base, **updates)
