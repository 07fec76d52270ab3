from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Protocol

from playwright.async_api import Browser, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .config import ScraperConfig
from .errors import RateLimitError, SurfaceError, SurfaceTimeoutError

logger = logging.getLogger(__name__)


class RenderingSurface(Protocol):
    """What the extraction core needs from a browser page.

    Every operation may raise ``SurfaceTimeoutError``; none blocks forever.
    """

    @property
    def url(self) -> str: ...

    async def navigate(self, url: str) -> None: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def click(self, selector: str) -> None: ...

    async def is_visible(self, selector: str) -> bool: ...

    async def content(self) -> str: ...

    async def screenshot(self) -> bytes: ...

    async def wait(self, ms: int) -> None: ...


class PlaywrightSurface:
    def __init__(self, page: Page, timeout_ms: int = 45000, wait_until: str = "networkidle") -> None:
        self._page = page
        self.timeout_ms = timeout_ms
        self.wait_until = wait_until
        self.last_status: int | None = None

    @property
    def url(self) -> str:
        return self._page.url

    async def navigate(self, url: str) -> None:
        try:
            response = await self._page.goto(url, wait_until=self.wait_until, timeout=self.timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise SurfaceTimeoutError(f"Timed out navigating to {url}") from exc
        except PlaywrightError as exc:
            raise SurfaceError(f"Navigation to {url} failed: {exc}") from exc
        self.last_status = response.status if response else None
        if self.last_status == 429:
            raise RateLimitError(f"Rate limit detected while loading {url} (HTTP 429).")

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        try:
            return await asyncio.wait_for(self._page.evaluate(script, arg), timeout=self.timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise SurfaceTimeoutError("Timed out evaluating page script") from exc
        except PlaywrightError as exc:
            raise SurfaceError(f"Page script failed: {exc}") from exc

    async def click(self, selector: str) -> None:
        try:
            await self._page.locator(selector).first.click(timeout=self.timeout_ms)
            await self._page.wait_for_load_state("domcontentloaded", timeout=self.timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise SurfaceTimeoutError(f"Timed out clicking {selector}") from exc
        except PlaywrightError as exc:
            raise SurfaceError(f"Click on {selector} failed: {exc}") from exc

    async def is_visible(self, selector: str) -> bool:
        try:
            return await self._page.locator(selector).first.is_visible()
        except PlaywrightError as exc:
            raise SurfaceError(f"Visibility check on {selector} failed: {exc}") from exc

    async def content(self) -> str:
        try:
            return await asyncio.wait_for(self._page.content(), timeout=self.timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise SurfaceTimeoutError("Timed out reading page content") from exc
        except PlaywrightError as exc:
            raise SurfaceError(f"Reading page content failed: {exc}") from exc

    async def screenshot(self) -> bytes:
        try:
            return await self._page.screenshot(full_page=True, timeout=self.timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise SurfaceTimeoutError("Timed out taking screenshot") from exc
        except PlaywrightError as exc:
            raise SurfaceError(f"Screenshot failed: {exc}") from exc

    async def wait(self, ms: int) -> None:
        if ms > 0:
            await self._page.wait_for_timeout(ms)


class BrowserSessions:
    """Hands out independent browser contexts, one per exclusive owner."""

    def __init__(self, browser: Browser, config: ScraperConfig) -> None:
        self._browser = browser
        self._config = config

    @asynccontextmanager
    async def session(self, persist_state: bool = False) -> AsyncIterator[PlaywrightSurface]:
        config = self._config
        storage_state_path = config.storage_state
        try:
            context = await self._browser.new_context(
                user_agent=config.user_agent,
                locale=config.locale,
                viewport={"width": config.viewport_width, "height": config.viewport_height},
                storage_state=str(storage_state_path) if storage_state_path and storage_state_path.exists() else None,
            )
        except PlaywrightError as exc:
            raise SurfaceError(f"Could not open a browser context: {exc}") from exc
        try:
            page = await context.new_page()
        except PlaywrightError as exc:
            await context.close()
            raise SurfaceError(f"Could not open a page: {exc}") from exc
        page.set_default_timeout(config.page_timeout_ms)
        try:
            yield PlaywrightSurface(page, timeout_ms=config.page_timeout_ms, wait_until=config.wait_until)
        finally:
            if persist_state and storage_state_path:
                try:
                    await context.storage_state(path=str(storage_state_path))
                except PlaywrightError as exc:
                    logger.warning("Could not save storage state to %s: %s", storage_state_path, exc)
            await context.close()


@asynccontextmanager
async def launch_browser(config: ScraperConfig) -> AsyncIterator[BrowserSessions]:
    async with async_playwright() as playwright:
        try:
            browser = await playwright.chromium.launch(headless=config.headless)
        except PlaywrightError as exc:
            raise RuntimeError(
                "Playwright browser binaries are not installed for this scraper's venv. "
                "Run: python -m playwright install chromium"
            ) from exc
        try:
            yield BrowserSessions(browser, config)
        finally:
            await browser.close()


async def dismiss_consent(surface: RenderingSurface, selectors: list[str]) -> bool:
    for selector in selectors:
        try:
            if await surface.is_visible(selector):
                await surface.click(selector)
                await surface.wait(500)
                return True
        except SurfaceError as exc:
            logger.debug("Consent selector %s not usable: %s", selector, exc)
            continue
    return False
