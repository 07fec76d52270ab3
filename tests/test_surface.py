"""Tests for browser session setup failures."""
import pytest
from playwright.async_api import Error as PlaywrightError

from onsale_scraper.config import ScraperConfig
from onsale_scraper.errors import SurfaceError
from onsale_scraper.surface import BrowserSessions


class BrokenContext:
    def __init__(self):
        self.closed = False

    async def new_page(self):
        raise PlaywrightError("Target page, context or browser has been closed")

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, context=None):
        self.context = context

    async def new_context(self, **kwargs):
        if self.context is None:
            raise PlaywrightError("Browser has been closed")
        return self.context


@pytest.mark.asyncio
async def test_context_failure_becomes_surface_error():
    sessions = BrowserSessions(FakeBrowser(), ScraperConfig())

    with pytest.raises(SurfaceError, match="browser context"):
        async with sessions.session():
            pass


@pytest.mark.asyncio
async def test_page_failure_closes_context():
    context = BrokenContext()
    sessions = BrowserSessions(FakeBrowser(context), ScraperConfig())

    with pytest.raises(SurfaceError, match="open a page"):
        async with sessions.session():
            pass

    assert context.closed
