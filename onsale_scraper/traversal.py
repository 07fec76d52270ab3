from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Iterable
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from .config import ScraperConfig
from .debug import DebugSink
from .dedupe import Deduplicator
from .errors import BotChallengeError, RateLimitError, ScraperError, TraversalError
from .extractor import detect_block, extract_page, reports_empty
from .models import CanonicalRecord, PageExtraction, PaginationCursor, PollOutcome, StopReason, TraversalResult
from .normalize import to_canonical_record
from .pagination import AdvanceResult, PaginationController, Transition
from .readiness import wait_for_results
from .surface import RenderingSurface, dismiss_consent

logger = logging.getLogger(__name__)

EMPTY_STREAK_LIMIT = 2


@dataclass
class PageRead:
    extraction: PageExtraction | None
    records: list[CanonicalRecord] = field(default_factory=list)
    error: str | None = None

    @property
    def explicitly_empty(self) -> bool:
        return not self.records and self.extraction is not None and reports_empty(self.extraction)


class ListingTraversal:
    """Runs search queries end to end on one exclusively owned surface."""

    def __init__(
        self,
        surface: RenderingSurface,
        config: ScraperConfig,
        *,
        debug_sink: DebugSink | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.surface = surface
        self.config = config
        self.debug_sink = debug_sink
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._consent_checked = False

    def build_search_url(self, query: str) -> str:
        parsed = urlparse(self.config.base_url)
        params = parse_qs(parsed.query)
        params[self.config.query_param] = [query]
        return urlunparse(parsed._replace(query=urlencode(params, doseq=True)))

    async def scrape_with_fallback(self, queries: Iterable[str] | None = None) -> TraversalResult:
        variants = list(queries if queries is not None else self.config.queries)
        if not variants:
            raise ValueError("At least one query is required")

        results: list[TraversalResult] = []
        for query in variants:
            result = await self.scrape_query(query)
            results.append(result)
            if result.items:
                return result
            logger.warning("Query %r returned no items (%s)", query, result.stopped_reason)

        if all(result.error for result in results):
            raise TraversalError(f"All {len(results)} query variants failed; last error: {results[-1].error}")
        return results[0]

    async def scrape_query(self, query: str) -> TraversalResult:
        base_url = self.build_search_url(query)
        label = f"search-{query}"
        result = TraversalResult(query=query, base_url=base_url)
        dedup = Deduplicator()
        controller = PaginationController(self.surface, self.config, base_url, wait_ready=self._wait_ready)

        page = await self._read_page(query, f"{label}-page-1", base_url, navigate_first=True)
        cursor = controller.start(self.surface.url if page.extraction else base_url)
        revisited = False

        while True:
            if page.error:
                result.error = page.error
            added = dedup.extend(page.records)
            logger.info(
                "%s page %d: %d items, %d new (total %d)",
                label,
                cursor.current_page,
                len(page.records),
                added,
                len(dedup),
            )
            cursor = self._after_page(cursor, page, added, revisited)
            if cursor.stopped or page.extraction is None:
                break

            decision = controller.decide(cursor, page.extraction, self.surface.url)
            cursor = decision.cursor
            if decision.transition is None:
                break

            await self._pause_between_pages()
            advance = await self._advance(controller, cursor, decision.transition, result)
            cursor = advance.cursor
            if cursor.stopped:
                break
            revisited = advance.revisited
            page = await self._read_page(
                query,
                f"{label}-page-{cursor.current_page}",
                (advance.transition or decision.transition).url,
                navigate_first=False,
            )

        result.items = dedup.items
        result.page_count = cursor.current_page
        result.stopped_reason = cursor.stopped_reason or StopReason.NO_NEXT_PAGE
        logger.info(
            "%s finished: %d items over %d pages (%s)",
            label,
            len(result.items),
            result.page_count,
            result.stopped_reason.value,
        )
        return result

    def _after_page(
        self, cursor: PaginationCursor, page: PageRead, added: int, revisited: bool
    ) -> PaginationCursor:
        if page.records:
            cursor = replace(cursor, empty_streak=0)
            if revisited and added == 0:
                return replace(cursor, stopped_reason=StopReason.PAGINATION_STALLED)
            return cursor

        if page.explicitly_empty and cursor.current_page == 1:
            return replace(cursor, empty_streak=1, stopped_reason=StopReason.COMPLETED)
        streak = cursor.empty_streak + 1
        if streak >= EMPTY_STREAK_LIMIT:
            return replace(cursor, empty_streak=streak, stopped_reason=StopReason.EMPTY_PAGES_STREAK)
        if page.extraction is None:
            return replace(cursor, empty_streak=streak, stopped_reason=StopReason.NO_NEXT_PAGE)
        return replace(cursor, empty_streak=streak)

    async def _wait_ready(self, label: str) -> PollOutcome:
        return await wait_for_results(self.surface, self.config, label)

    async def _read_page(self, query: str, label: str, page_url: str | None, navigate_first: bool) -> PageRead:
        """Load and extract one page, retrying while it yields no records."""
        config = self.config
        extraction: PageExtraction | None = None
        last_error: str | None = None

        for attempt in range(config.page_retry_count + 1):
            try:
                if page_url and (navigate_first or attempt > 0):
                    await self.surface.navigate(page_url)
                    await self._dismiss_consent_once()
                await self._wait_ready(label)
                extracted = await extract_page(self.surface, config.selectors, config.page_param)
                status = getattr(self.surface, "last_status", None)
                block = detect_block(extracted.title, extracted.body_preview, status)
                if block == "rate-limited":
                    raise RateLimitError(f"Rate limit detected while scraping {self.surface.url}")
                if block == "challenge" and not extracted.fragments:
                    raise BotChallengeError(f"Bot challenge detected while scraping {self.surface.url}")
                extraction = extracted

                records = self._normalize(extraction, query)
                if records or reports_empty(extraction) or attempt == config.page_retry_count:
                    page = PageRead(extraction, records)
                    if not records:
                        await self._capture_empty(label, page)
                    return page
                logger.info("%s yielded no records (attempt %d); retrying", label, attempt + 1)
            except (ScraperError, ValueError) as exc:
                last_error = f"{exc.__class__.__name__}: {exc}"
                logger.warning("%s attempt %d failed: %s", label, attempt + 1, last_error)
            if attempt < config.page_retry_count:
                await self.surface.wait(config.retry_delay_ms)

        page = PageRead(extraction, [], last_error)
        await self._capture_empty(label, page)
        return page

    def _normalize(self, extraction: PageExtraction, query: str) -> list[CanonicalRecord]:
        page_url = self.surface.url
        scraped_at = self._clock().isoformat()
        return [
            to_canonical_record(
                fragment,
                source=self.config.source,
                query=query,
                page_url=page_url,
                page_category=extraction.breadcrumb,
                scraped_at=scraped_at,
            )
            for fragment in extraction.fragments
            if not fragment.error
        ]

    async def _advance(
        self,
        controller: PaginationController,
        cursor: PaginationCursor,
        transition: Transition,
        result: TraversalResult,
    ) -> AdvanceResult:
        last_error: str | None = None
        for attempt in range(self.config.page_retry_count + 1):
            try:
                return await controller.advance(cursor, transition)
            except ScraperError as exc:
                last_error = f"{exc.__class__.__name__}: {exc}"
                logger.warning(
                    "Transition to page %d failed (attempt %d): %s", transition.target_page, attempt + 1, last_error
                )
            if attempt < self.config.page_retry_count:
                await self.surface.wait(self.config.retry_delay_ms)
        result.error = last_error
        return AdvanceResult(replace(cursor, stopped_reason=StopReason.NO_NEXT_PAGE))

    async def _pause_between_pages(self) -> None:
        jitter = max(0, self.config.page_jitter_ms)
        delay = max(0, self.config.page_delay_ms) + int(self._rng.random() * jitter)
        if delay > 0:
            await self.surface.wait(delay)

    async def _dismiss_consent_once(self) -> None:
        if self._consent_checked:
            return
        self._consent_checked = True
        if await dismiss_consent(self.surface, self.config.selectors.consent):
            logger.info("Dismissed cookie consent banner")

    async def _capture_empty(self, label: str, page: PageRead) -> None:
        if self.debug_sink is None:
            return
        extraction = page.extraction
        details = {
            "label": label,
            "url": self.surface.url,
            "timestamp": self._clock().isoformat(),
            "error": page.error,
            "empty_state_text": extraction.empty_state_text if extraction else None,
            "results_count_text": extraction.results_count_text if extraction else None,
            "visible_card_count": extraction.visible_card_count if extraction else 0,
            "broken_cards": sum(1 for fragment in extraction.fragments if fragment.error) if extraction else 0,
        }
        logger.info("%s: 0 items %s", label, details)
        await self.debug_sink.capture_page(self.surface, label, details)
