from __future__ import annotations


class ScraperError(RuntimeError):
    pass


class SurfaceError(ScraperError):
    """A rendering surface operation failed (navigation, script, click)."""


class SurfaceTimeoutError(SurfaceError):
    pass


class RateLimitError(ScraperError):
    pass


class BotChallengeError(ScraperError):
    pass


class TraversalError(ScraperError):
    """Every query variant came back empty after navigation failures."""


class ZeroResultRegressionError(ScraperError):
    def __init__(self, historical_count: int) -> None:
        super().__init__(
            f"Scrape returned 0 items; historical count {historical_count}. Aborting publish."
        )
        self.historical_count = historical_count
