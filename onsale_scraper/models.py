from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class StopReason(str, Enum):
    MAX_PAGE_REACHED = "max-page-reached"
    NEXT_DISABLED = "next-disabled"
    NO_NEXT_PAGE = "no-next-page"
    PAGINATION_STALLED = "pagination-stalled"
    EMPTY_PAGES_STREAK = "empty-pages-streak"
    PAGE_LIMIT_REACHED = "page-limit-reached"
    COMPLETED = "completed"


class PollStatus(str, Enum):
    READY = "ready"
    TIMED_OUT = "timed-out"
    ERROR = "error"


@dataclass(frozen=True)
class PollOutcome(Generic[T]):
    status: PollStatus
    value: T | None
    attempts: int
    reason: str | None = None

    @property
    def ready(self) -> bool:
        return self.status is PollStatus.READY


@dataclass
class RawItemFragment:
    name: str | None = None
    brand: str | None = None
    sku: str | None = None
    card_text: str | None = None
    price_texts: list[str] = field(default_factory=list)
    regular_texts: list[str] = field(default_factory=list)
    unit_label: str | None = None
    unit_price_text: str | None = None
    link: str | None = None
    image: str | None = None
    category: str | None = None
    error: str | None = None


@dataclass
class CanonicalRecord:
    source: str
    query: str
    name: str | None
    brand: str | None
    sku: str | None
    price_sale: float | None
    price_regular: float | None
    unit_label: str | None
    unit_price: float | None
    url: str
    image: str | None
    category: str | None
    scraped_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


RECORD_FIELDS = [
    "source",
    "query",
    "name",
    "brand",
    "sku",
    "price_sale",
    "price_regular",
    "unit_label",
    "unit_price",
    "url",
    "image",
    "category",
    "scraped_at",
]


@dataclass
class PageState:
    cards_count: int = 0
    loader_visible: bool = False
    results_count_text: str | None = None
    empty_state_text: str | None = None


@dataclass
class PaginationLink:
    href: str | None
    text: str | None
    page: int | None
    disabled: bool = False


@dataclass
class NextControl:
    href: str | None
    disabled: bool = False
    clickable: bool = True


@dataclass
class PageExtraction:
    fragments: list[RawItemFragment] = field(default_factory=list)
    pagination_links: list[PaginationLink] = field(default_factory=list)
    next_control: NextControl | None = None
    active_page: int | None = None
    breadcrumb: str | None = None
    empty_state_text: str | None = None
    results_count_text: str | None = None
    visible_card_count: int = 0
    title: str = ""
    body_preview: str = ""

    @property
    def has_pagination(self) -> bool:
        return bool(self.pagination_links) or self.next_control is not None


@dataclass(frozen=True)
class PaginationCursor:
    current_page: int = 1
    max_page_known: int | None = None
    stopped_reason: StopReason | None = None
    visited_urls: tuple[str, ...] = ()
    empty_streak: int = 0

    @property
    def stopped(self) -> bool:
        return self.stopped_reason is not None


@dataclass
class TraversalResult:
    query: str
    base_url: str
    items: list[CanonicalRecord] = field(default_factory=list)
    page_count: int = 0
    stopped_reason: StopReason | None = None
    error: str | None = None
