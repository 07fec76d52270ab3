"""Scripted in-memory rendering surface for exercising the extraction core."""
from __future__ import annotations

import copy
from collections import defaultdict
from typing import Any

import pytest

from onsale_scraper.config import ScraperConfig
from onsale_scraper.enrich import DETAIL_SCRIPT
from onsale_scraper.errors import SurfaceError, SurfaceTimeoutError
from onsale_scraper.extractor import ACTIVE_PAGE_SCRIPT, COUNT_SCRIPT, EXTRACT_SCRIPT
from onsale_scraper.readiness import PAGE_STATE_SCRIPT

BASE_URL = "https://shop.test/fr/page-recherche"


def search_url(query: str = "onsale", page: int | None = None) -> str:
    url = f"{BASE_URL}?search={query}"
    return url if page is None else f"{url}&page={page}"


def card(
    name: str | None,
    *,
    price: str | None = "4,99 $",
    regular: str | None = None,
    link: str | None = None,
    sku: str | None = None,
    text: str | None = None,
    unit_label: str | None = None,
    unit_price: str | None = None,
    image: str | None = None,
    category: str | None = None,
) -> dict[str, Any]:
    return {
        "name": name,
        "brand": None,
        "sku": sku,
        "text": text if text is not None else name,
        "priceTexts": [price] if price else [],
        "regularTexts": [regular] if regular else [],
        "unitLabel": unit_label,
        "unitPrice": unit_price,
        "link": link,
        "image": image,
        "category": category,
        "error": None,
    }


def listing(
    results: list[dict[str, Any]] | None = None,
    *,
    pages: list[int] | None = None,
    page_href: str | None = None,
    next_href: str | None = None,
    next_disabled: bool = False,
    has_next: bool = False,
    active: int | None = None,
    empty: str | None = None,
    title: str = "Recherche",
    body: str = "",
    breadcrumb: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    links = []
    for number in pages or []:
        href = f"{page_href}&page={number}" if page_href else None
        links.append({"href": href, "text": str(number), "page": number, "disabled": False})
    next_control = None
    if has_next or next_href or next_disabled:
        next_control = {"href": next_href, "disabled": next_disabled, "clickable": True}
    payload = {
        "results": results or [],
        "paginationLinks": links,
        "next": next_control,
        "activePage": active,
        "breadcrumb": breadcrumb,
        "emptyStateText": empty,
        "resultsCountText": None,
        "visibleCardCount": len(results or []),
        "title": title,
        "bodyPreview": body,
    }
    payload.update(extra)
    return payload


class FakeSurface:
    """Pages keyed by URL; a list value is served one entry per extraction."""

    def __init__(
        self,
        pages: dict[str, Any] | None = None,
        *,
        clicks: dict[tuple[str, str], str] | None = None,
        failures: dict[str, int] | None = None,
        start_url: str = "about:blank",
    ) -> None:
        self.pages = pages or {}
        self.clicks = clicks or {}
        self.failures = dict(failures or {})
        self._url = start_url
        self._served: dict[str, int] = defaultdict(int)
        self.navigations: list[str] = []
        self.clicked: list[str] = []
        self.waits: list[int] = []
        self.last_status: int | None = 200

    @property
    def url(self) -> str:
        return self._url

    def _entry(self, consume: bool = False) -> dict[str, Any]:
        entry = self.pages.get(self._url, listing())
        if isinstance(entry, list):
            index = min(self._served[self._url], len(entry) - 1)
            if consume:
                self._served[self._url] += 1
            entry = entry[index]
        return copy.deepcopy(entry)

    async def navigate(self, url: str) -> None:
        self.navigations.append(url)
        if self.failures.get(url, 0) > 0:
            self.failures[url] -= 1
            raise SurfaceTimeoutError(f"Timed out navigating to {url}")
        self._url = url

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        entry = self._entry(consume=script == EXTRACT_SCRIPT)
        if script == EXTRACT_SCRIPT:
            return entry
        if script == PAGE_STATE_SCRIPT:
            return {
                "cardsCount": len(entry.get("results") or []),
                "loaderVisible": entry.get("loaderVisible", False),
                "resultsCountText": entry.get("resultsCountText"),
                "emptyStateText": entry.get("emptyStateText"),
            }
        if script == ACTIVE_PAGE_SCRIPT:
            return entry.get("activePage")
        if script == COUNT_SCRIPT:
            counts = entry.get("counts", {})
            return [counts.get(selector, 0) for selector in arg]
        if script == DETAIL_SCRIPT:
            return entry.get("details")
        raise AssertionError("unexpected script")

    async def click(self, selector: str) -> None:
        self.clicked.append(selector)
        target = self.clicks.get((self._url, selector))
        if target is None:
            raise SurfaceError(f"No clickable element for {selector}")
        self._url = target

    async def is_visible(self, selector: str) -> bool:
        return selector in self._entry().get("visible", [])

    async def content(self) -> str:
        return "<html><body></body></html>"

    async def screenshot(self) -> bytes:
        return b"\x89PNG"

    async def wait(self, ms: int) -> None:
        self.waits.append(ms)


@pytest.fixture
def config(tmp_path) -> ScraperConfig:
    return ScraperConfig(
        base_url=BASE_URL,
        source="testshop",
        output_dir=tmp_path / "out",
        debug_dir=tmp_path / "debug",
        page_retry_count=1,
        retry_delay_ms=1000,
        poll_attempts=2,
        poll_min_delay_ms=10,
        poll_max_delay_ms=20,
        settle_ms=0,
        page_delay_ms=0,
        page_jitter_ms=0,
        page_limit=10,
    )
