from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import traceback
from dataclasses import replace
from pathlib import Path

from playwright.async_api import Error as PlaywrightError

from onsale_scraper.config import ScraperConfig, load_config, load_selectors
from onsale_scraper.debug import DebugSink
from onsale_scraper.enrich import enrich_records, make_detail_enricher
from onsale_scraper.publish import PublishGuard
from onsale_scraper.store import HistoricalStore
from onsale_scraper.surface import launch_browser
from onsale_scraper.traversal import ListingTraversal


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scrape on-sale grocery listings using Playwright")
    parser.add_argument(
        "--query",
        action="append",
        default=None,
        help="Search query variant. Repeat to set the fallback order (default: onsale, solde, promo).",
    )
    parser.add_argument("--base-url", default=None, help="Search page URL the query parameter is added to")
    parser.add_argument("--source", default=None, help="Source name written on every record")
    parser.add_argument("--output-dir", default=None, help="Directory holding data.json, data.csv and metadata.json")
    parser.add_argument("--debug-dir", default=None, help="Directory for anomaly artifacts (HTML, screenshots, JSON)")
    parser.add_argument("--selectors-file", default=None, help="JSON file overriding the default selector lists")
    parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Hard upper bound on pages per query (safety valve against pagination loops)",
    )
    parser.add_argument("--page-retries", type=int, default=None, help="Extra attempts for a page yielding no items")
    parser.add_argument("--headed", action="store_true", help="Run browser in headed mode")
    parser.add_argument(
        "--delay-seconds",
        type=float,
        default=None,
        help="Delay between page requests to reduce rate limiting",
    )
    parser.add_argument(
        "--delay-jitter-seconds",
        type=float,
        default=None,
        help="Random extra delay (0..jitter) added to each page delay",
    )
    parser.add_argument(
        "--storage-state",
        default=None,
        help="Path to Playwright storage state JSON (cookies/localStorage) to reuse between runs",
    )
    parser.add_argument(
        "--enrich-details",
        action="store_true",
        help="Visit each product page afterwards to fill missing brand/sku/category/image",
    )
    parser.add_argument("--enrich-workers", type=int, default=None, help="Parallel sessions for --enrich-details")
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO or SCRAPER_LOG_LEVEL)")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace, base: ScraperConfig | None = None) -> ScraperConfig:
    config = base or load_config()
    overrides: dict = {}
    if args.query:
        overrides["queries"] = [query.strip() for query in args.query if query.strip()]
    if args.base_url:
        overrides["base_url"] = args.base_url
    if args.source:
        overrides["source"] = args.source
    if args.output_dir:
        overrides["output_dir"] = Path(args.output_dir)
    if args.debug_dir:
        overrides["debug_dir"] = Path(args.debug_dir)
    if args.max_pages is not None:
        overrides["page_limit"] = max(1, args.max_pages)
    if args.page_retries is not None:
        overrides["page_retry_count"] = max(0, args.page_retries)
    if args.headed:
        overrides["headless"] = False
    if args.delay_seconds is not None:
        overrides["page_delay_ms"] = int(max(0.0, args.delay_seconds) * 1000)
    if args.delay_jitter_seconds is not None:
        overrides["page_jitter_ms"] = int(max(0.0, args.delay_jitter_seconds) * 1000)
    if args.storage_state:
        overrides["storage_state"] = Path(args.storage_state)
    if args.enrich_details:
        overrides["enrich_details"] = True
    if args.enrich_workers is not None:
        overrides["enrich_workers"] = max(1, args.enrich_workers)
    if args.selectors_file:
        overrides["selectors"] = load_selectors(Path(args.selectors_file), config.selectors)
    return replace(config, **overrides)


async def run(config: ScraperConfig) -> int:
    debug_sink = DebugSink(config.debug_dir, prefix=config.source)
    store = HistoricalStore(config.output_dir)
    try:
        async with launch_browser(config) as sessions:
            async with sessions.session(persist_state=True) as surface:
                traversal = ListingTraversal(surface, config, debug_sink=debug_sink)
                result = await traversal.scrape_with_fallback(config.queries)

            if config.enrich_details and result.items:
                result.items = await enrich_records(
                    result.items,
                    sessions.session,
                    make_detail_enricher(config.selectors),
                    workers=config.enrich_workers,
                    max_delay_ms=config.enrich_max_delay_ms,
                )

        report = PublishGuard(store).publish(result)
    except (RuntimeError, PlaywrightError) as error:
        debug_sink.write_error("fatal", traceback.format_exc())
        print(f"ERROR: {error}", file=sys.stderr)
        return 1

    if report.dataset_written:
        print(f"Saved {report.total_items} products to {store.data_path}")
    else:
        print("WARNING: No products found; wrote metadata only.")
    print(
        f"Query: {result.query} | pages: {result.page_count} | stopped: "
        f"{result.stopped_reason.value if result.stopped_reason else 'unknown'}"
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    config = build_config(args)
    level = (args.log_level or os.getenv("SCRAPER_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return asyncio.run(run(config))


if __name__ == "__main__":
    raise SystemExit(main())
