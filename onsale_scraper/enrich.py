"""Optional second pass that visits each product page for missing fields.

Each worker owns one session and a disjoint stride of the record list, so no
surface is ever shared; results land back in their original slot.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import replace
from typing import Any, AsyncContextManager, Awaitable, Callable
from urllib.parse import urldefrag

from .config import SelectorConfig
from .errors import ScraperError
from .models import CanonicalRecord
from .normalize import normalize_whitespace, resolve_url
from .surface import RenderingSurface

logger = logging.getLogger(__name__)

Enricher = Callable[[RenderingSurface, CanonicalRecord], Awaitable[CanonicalRecord]]
SessionOpener = Callable[[], AsyncContextManager[RenderingSurface]]

DETAIL_SCRIPT = """
({ brand, sku, category, image }) => {
  const pick = (selectors) => {
    for (const selector of selectors) {
      for (const node of document.querySelectorAll(selector)) {
        const value = node.getAttribute('content') || node.getAttribute('src') || node.textContent;
        const text = value ? value.replace(/\\s+/g, ' ').trim() : '';
        if (text) return text;
      }
    }
    return null;
  };
  return { brand: pick(brand), sku: pick(sku), category: pick(category), image: pick(image) };
}
"""


def make_detail_enricher(selectors: SelectorConfig) -> Enricher:
    async def fill_missing_details(surface: RenderingSurface, record: CanonicalRecord) -> CanonicalRecord:
        _, fragment = urldefrag(record.url)
        if fragment:
            # fallback urls point back at the listing, not at a product page
            return record
        await surface.navigate(record.url)
        details: Any = await surface.evaluate(
            DETAIL_SCRIPT,
            {
                "brand": selectors.detail_brand,
                "sku": selectors.detail_sku,
                "category": selectors.detail_category,
                "image": selectors.detail_image,
            },
        )
        if not isinstance(details, dict):
            return record
        return replace(
            record,
            brand=record.brand or normalize_whitespace(details.get("brand")),
            sku=record.sku or normalize_whitespace(details.get("sku")),
            category=record.category or normalize_whitespace(details.get("category")),
            image=record.image or resolve_url(details.get("image"), surface.url),
        )

    return fill_missing_details


async def enrich_records(
    records: list[CanonicalRecord],
    open_session: SessionOpener,
    enrich_one: Enricher,
    *,
    workers: int = 3,
    max_delay_ms: int = 800,
    rng: random.Random | None = None,
) -> list[CanonicalRecord]:
    results = list(records)
    if not results:
        return results
    pool_size = max(1, min(workers, len(results)))
    rng = rng or random.Random()

    async def worker(slots: range) -> None:
        try:
            async with open_session() as surface:
                for index in slots:
                    await surface.wait(int(rng.random() * max(0, max_delay_ms)))
                    try:
                        results[index] = await enrich_one(surface, records[index])
                    except (ScraperError, ValueError) as exc:
                        logger.warning("Could not enrich %s: %s", records[index].url, exc)
        except Exception:
            logger.exception("Enrichment worker for slots %s stopped early", slots)

    await asyncio.gather(*(worker(range(start, len(results), pool_size)) for start in range(pool_size)))
    enriched = sum(1 for before, after in zip(records, results) if before is not after)
    logger.info("Enriched %d of %d records with %d workers", enriched, len(results), pool_size)
    return results
