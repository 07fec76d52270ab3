from __future__ import annotations

import argparse
import asyncio
import re

from onsale_scraper.config import load_config
from onsale_scraper.extractor import count_selector_matches, extract_page
from onsale_scraper.readiness import wait_for_results
from onsale_scraper.surface import launch_browser


async def probe(url: str) -> None:
    config = load_config()
    async with launch_browser(config) as sessions:
        async with sessions.session() as surface:
            await surface.navigate(url)
            outcome = await wait_for_results(surface, config, "probe")

            print("status", surface.last_status)
            print("url", surface.url)
            print("readiness", outcome.status.value, "after", outcome.attempts, "polls", outcome.value)

            extraction = await extract_page(surface, config.selectors, config.page_param)
            print("title", extraction.title)
            print("body_preview", extraction.body_preview[:800].replace("\n", " | "))
            print("cards", extraction.visible_card_count, "next", extraction.next_control)
            print("pages", [link.page for link in extraction.pagination_links])

            candidates = [
                *config.selectors.cards,
                "[data-testid*='product']",
                "[class*='product']",
                "[class*='card']",
                "article",
            ]
            for selector, count in (await count_selector_matches(surface, candidates)).items():
                print("selector", selector, count)

            html = await surface.content()
            print("html_len", len(html))
            classes = re.findall(r'class="([^"]+)"', html, flags=re.I)
            product_classes = sorted({value for value in classes if "product" in value.lower()})
            print("product_classes", product_classes[:40])


def main() -> None:
    parser = argparse.ArgumentParser(description="Report what the listing extractor sees on a page")
    parser.add_argument("url", help="Listing URL to probe")
    args = parser.parse_args()
    asyncio.run(probe(args.url))


if __name__ == "__main__":
    main()
