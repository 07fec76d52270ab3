"""Pagination state machine.

A cursor moves through three situations: an enabled next control is known,
a maximum page number is known, or nothing allows advancing. Each decision
returns a fresh ``PaginationCursor``; the controller never mutates one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from .config import ScraperConfig
from .extractor import NEXT_MARKER, PAGE_MARKER, read_active_page
from .models import PageExtraction, PaginationCursor, PollOutcome, StopReason
from .normalize import resolve_url
from .readiness import wait_for_results
from .surface import RenderingSurface

logger = logging.getLogger(__name__)


class TransitionKind(str, Enum):
    LINK = "link"
    CLICK = "click"
    PAGE_CONTROL = "page-control"
    URL = "url"


@dataclass(frozen=True)
class Transition:
    kind: TransitionKind
    target_page: int
    url: str | None = None
    selector: str | None = None
    # tried when this transition lands on the wrong page
    fallback: Transition | None = None

    @property
    def addressable(self) -> bool:
        return self.url is not None


@dataclass(frozen=True)
class Decision:
    cursor: PaginationCursor
    transition: Transition | None = None


@dataclass(frozen=True)
class AdvanceResult:
    cursor: PaginationCursor
    revisited: bool = False
    transition: Transition | None = None


def with_page_number(url: str, page_param: str, page_number: int) -> str:
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    query[page_param] = [str(page_number)]
    updated_query = urlencode(query, doseq=True)
    return urlunparse(parsed._replace(query=updated_query))


def derive_max_page(extraction: PageExtraction) -> int | None:
    pages = [link.page for link in extraction.pagination_links if link.page is not None]
    return max(pages) if pages else None


class PaginationController:
    def __init__(
        self,
        surface: RenderingSurface,
        config: ScraperConfig,
        base_url: str,
        wait_ready: Callable[[str], Awaitable[PollOutcome]] | None = None,
    ) -> None:
        self.surface = surface
        self.config = config
        self.base_url = base_url
        self._wait_ready = wait_ready or (lambda label: wait_for_results(surface, config, label))

    def start(self, first_url: str) -> PaginationCursor:
        return PaginationCursor(current_page=1, visited_urls=(first_url,))

    def decide(self, cursor: PaginationCursor, extraction: PageExtraction, page_url: str) -> Decision:
        derived = derive_max_page(extraction)
        known = [value for value in (cursor.max_page_known, derived) if value is not None]
        max_page = max(known) if known else None
        cursor = replace(cursor, max_page_known=max_page)

        current = cursor.current_page
        target = current + 1
        transition = self._next_control_transition(extraction, page_url, target)
        if max_page is not None and current < max_page:
            by_number = self._page_number_transition(extraction, page_url, target)
            if transition is None:
                transition = by_number
            elif transition.kind is TransitionKind.CLICK:
                transition = replace(transition, fallback=by_number)

        if transition is not None:
            if current >= self.config.page_limit:
                logger.warning("Page limit %d reached; stopping pagination", self.config.page_limit)
                return Decision(replace(cursor, stopped_reason=StopReason.PAGE_LIMIT_REACHED))
            return Decision(cursor, transition)

        if max_page is not None:
            reason = StopReason.MAX_PAGE_REACHED
        elif extraction.next_control is not None and extraction.next_control.disabled:
            reason = StopReason.NEXT_DISABLED
        elif not extraction.has_pagination:
            reason = StopReason.COMPLETED
        else:
            reason = StopReason.NO_NEXT_PAGE
        return Decision(replace(cursor, stopped_reason=reason))

    def _next_control_transition(
        self, extraction: PageExtraction, page_url: str, target: int
    ) -> Transition | None:
        control = extraction.next_control
        if control is None or control.disabled:
            return None
        href = resolve_url(control.href, page_url)
        if href:
            return Transition(TransitionKind.LINK, target, url=href)
        if control.clickable:
            return Transition(TransitionKind.CLICK, target, selector=f"[{NEXT_MARKER}]")
        return None

    def _page_number_transition(self, extraction: PageExtraction, page_url: str, target: int) -> Transition:
        for link in extraction.pagination_links:
            if link.page != target or link.disabled:
                continue
            href = resolve_url(link.href, page_url)
            if href:
                return Transition(TransitionKind.PAGE_CONTROL, target, url=href)
            return Transition(TransitionKind.PAGE_CONTROL, target, selector=f'[{PAGE_MARKER}="{target}"]')
        return Transition(
            TransitionKind.URL, target, url=with_page_number(self.base_url, self.config.page_param, target)
        )

    async def advance(self, cursor: PaginationCursor, transition: Transition) -> AdvanceResult:
        """Perform ``transition`` and verify the site actually reached its target page."""
        target = transition.target_page
        logger.debug("Pagination %s transition to page %d", transition.kind.value, target)
        if transition.url is not None:
            await self.surface.navigate(transition.url)
        else:
            await self.surface.click(transition.selector or f"[{NEXT_MARKER}]")
        await self._wait_ready(f"page-{target}")

        active = await read_active_page(self.surface, self.config.selectors, self.config.page_param)
        url = self.surface.url
        if active is not None and active != target:
            if transition.fallback is not None:
                logger.warning(
                    "Pagination %s landed on page %d instead of %d; trying %s",
                    transition.kind.value,
                    active,
                    target,
                    transition.fallback.kind.value,
                )
                return await self.advance(cursor, transition.fallback)
            logger.warning("Pagination landed on page %d instead of %d; stopping", active, target)
            return AdvanceResult(replace(cursor, stopped_reason=StopReason.NO_NEXT_PAGE), transition=transition)

        revisited = url in cursor.visited_urls
        if revisited and active is None:
            if transition.fallback is not None:
                logger.warning(
                    "Pagination %s did not leave %s; trying %s", transition.kind.value, url, transition.fallback.kind.value
                )
                return await self.advance(cursor, transition.fallback)
            logger.warning("Pagination returned to already visited %s; stopping", url)
            return AdvanceResult(
                replace(cursor, stopped_reason=StopReason.PAGINATION_STALLED), revisited=True, transition=transition
            )

        visited = cursor.visited_urls if revisited else cursor.visited_urls + (url,)
        return AdvanceResult(
            replace(cursor, current_page=target, visited_urls=visited), revisited=revisited, transition=transition
        )
