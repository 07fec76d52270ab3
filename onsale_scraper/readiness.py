from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from .config import ScraperConfig, SelectorConfig
from .models import PageState, PollOutcome, PollStatus
from .surface import RenderingSurface

logger = logging.getLogger(__name__)

T = TypeVar("T")

PAGE_STATE_SCRIPT = """
({ containerSelectors, cardSelectors, loaderSelectors, emptySelectors, emptyPattern, countSelectors }) => {
  const normalize = (value) => (value == null ? null : (value.replace(/\\s+/g, ' ').trim() || null));
  const isVisible = (element) => {
    if (!element) return false;
    const style = window.getComputedStyle(element);
    const rect = element.getBoundingClientRect();
    return rect.width > 0 && rect.height > 0 && style.visibility !== 'hidden'
      && style.display !== 'none' && Number.parseFloat(style.opacity || '1') > 0;
  };
  const firstText = (selectors) => {
    for (const selector of selectors) {
      for (const node of document.querySelectorAll(selector)) {
        const text = normalize(node.textContent);
        if (text) return text;
      }
    }
    return null;
  };
  let scope = document;
  for (const selector of containerSelectors) {
    const container = document.querySelector(selector);
    if (container) { scope = container; break; }
  }
  let cardsCount = 0;
  for (const selector of cardSelectors) {
    const count = Array.from(scope.querySelectorAll(selector)).filter(isVisible).length;
    if (count > 0) { cardsCount = count; break; }
  }
  const loaderVisible = loaderSelectors.some((selector) =>
    Array.from(document.querySelectorAll(selector)).some(isVisible));
  const bodyText = normalize(document.body ? document.body.innerText : '') || '';
  const match = emptyPattern ? bodyText.match(new RegExp(emptyPattern, 'i')) : null;
  return {
    cardsCount,
    loaderVisible,
    resultsCountText: firstText(countSelectors),
    emptyStateText: firstText(emptySelectors) || (match ? match[1] : null),
    scoped: scope !== document,
  };
}
"""


async def poll_until(
    check: Callable[[], Awaitable[T]],
    is_ready: Callable[[T], bool],
    *,
    max_attempts: int,
    min_delay_ms: int,
    max_delay_ms: int,
    sleep: Callable[[int], Awaitable[None]],
) -> PollOutcome[T]:
    """Call ``check`` until ``is_ready`` accepts its value or attempts run out.

    The wait after attempt ``i`` grows linearly from ``min_delay_ms`` to
    ``max_delay_ms`` across the attempts. Never raises.
    """
    attempts = max(1, max_attempts)
    step = (max_delay_ms - min_delay_ms) / (attempts - 1) if attempts > 1 else 0
    last_value: T | None = None
    observed = False
    last_error: str | None = None

    for attempt in range(1, attempts + 1):
        try:
            value = await check()
        except Exception as exc:
            last_error = str(exc) or exc.__class__.__name__
            logger.debug("Poll attempt %d failed: %s", attempt, last_error)
        else:
            last_value = value
            observed = True
            if is_ready(value):
                return PollOutcome(PollStatus.READY, value, attempt)
        if attempt < attempts:
            await sleep(round(min_delay_ms + step * (attempt - 1)))

    if not observed:
        return PollOutcome(PollStatus.ERROR, None, attempts, reason=last_error)
    return PollOutcome(PollStatus.TIMED_OUT, last_value, attempts, reason=last_error)


def _state_from_payload(payload: object) -> PageState:
    if not isinstance(payload, dict):
        raise ValueError(f"Unexpected page state payload: {payload!r}")
    return PageState(
        cards_count=int(payload.get("cardsCount") or 0),
        loader_visible=bool(payload.get("loaderVisible")),
        results_count_text=payload.get("resultsCountText") or None,
        empty_state_text=payload.get("emptyStateText") or None,
    )


async def read_page_state(surface: RenderingSurface, selectors: SelectorConfig) -> PageState:
    payload = await surface.evaluate(
        PAGE_STATE_SCRIPT,
        {
            "containerSelectors": selectors.container,
            "cardSelectors": selectors.cards,
            "loaderSelectors": selectors.loader,
            "emptySelectors": selectors.empty_state,
            "emptyPattern": selectors.empty_state_pattern,
            "countSelectors": selectors.results_count,
        },
    )
    return _state_from_payload(payload)


def listing_settled(state: PageState) -> bool:
    return bool(state.results_count_text) or state.cards_count > 0 or not state.loader_visible


async def wait_for_results(
    surface: RenderingSurface, config: ScraperConfig, label: str = ""
) -> PollOutcome[PageState]:
    async def check() -> PageState:
        state = await read_page_state(surface, config.selectors)
        logger.debug("Listing state (%s): %s", label, state)
        return state

    outcome = await poll_until(
        check,
        listing_settled,
        max_attempts=config.poll_attempts,
        min_delay_ms=config.poll_min_delay_ms,
        max_delay_ms=config.poll_max_delay_ms,
        sleep=surface.wait,
    )
    if outcome.ready:
        await surface.wait(config.settle_ms)
    else:
        logger.info("Listing %s not settled after %d polls (%s)", label, outcome.attempts, outcome.status.value)
    return outcome
