from .config import ScraperConfig, SelectorConfig, load_config, load_selectors
from .dedupe import Deduplicator, identity_key
from .errors import ScraperError, TraversalError, ZeroResultRegressionError
from .models import CanonicalRecord, RawItemFragment, StopReason, TraversalResult
from .normalize import normalize_price_pair, parse_number, parse_price_candidates, parse_unit_price_text
from .publish import PublishGuard, read_historical_count
from .store import HistoricalStore
from .traversal import ListingTraversal

__all__ = [
    "CanonicalRecord",
    "Deduplicator",
    "HistoricalStore",
    "ListingTraversal",
    "PublishGuard",
    "RawItemFragment",
    "ScraperConfig",
    "ScraperError",
    "SelectorConfig",
    "StopReason",
    "TraversalError",
    "TraversalResult",
    "ZeroResultRegressionError",
    "identity_key",
    "load_config",
    "load_selectors",
    "normalize_price_pair",
    "parse_number",
    "parse_price_candidates",
    "parse_unit_price_text",
    "read_historical_count",
]
