"""Tests for pagination decisions and verified page transitions."""
import pytest

from onsale_scraper.extractor import coerce_extraction, extract_page
from onsale_scraper.models import NextControl, PageExtraction, PaginationCursor, PaginationLink, StopReason
from onsale_scraper.pagination import (
    PaginationController,
    Transition,
    TransitionKind,
    derive_max_page,
    with_page_number,
)
from tests.conftest import FakeSurface, card, listing, search_url


def make_controller(config, surface=None):
    return PaginationController(surface or FakeSurface(), config, search_url())


def extraction(**kwargs):
    return coerce_extraction(listing([card("Pommes")], **kwargs))


def test_with_page_number_replaces_existing_param():
    assert with_page_number(search_url(), "page", 2) == search_url(page=2)
    assert with_page_number(search_url(page=2), "page", 7) == search_url(page=7)


def test_derive_max_page_ignores_unnumbered_links():
    page = PageExtraction(
        pagination_links=[PaginationLink("/p/2", "2", 2), PaginationLink("/p/9", "…", None)]
    )
    assert derive_max_page(page) == 2
    assert derive_max_page(PageExtraction()) is None


class TestDecide:
    def test_next_link_is_followed(self, config):
        controller = make_controller(config)
        cursor = controller.start(search_url())

        decision = controller.decide(cursor, extraction(next_href="/fr/page-recherche?search=onsale&page=2"), search_url())

        assert decision.transition == Transition(TransitionKind.LINK, 2, url=search_url(page=2))
        assert not decision.cursor.stopped

    def test_next_button_without_href_is_clicked(self, config):
        controller = make_controller(config)

        decision = controller.decide(controller.start(search_url()), extraction(has_next=True), search_url())

        assert decision.transition.kind is TransitionKind.CLICK
        assert decision.transition.selector == "[data-onsale-next]"
        assert not decision.transition.addressable

    def test_next_button_keeps_page_number_fallback(self, config):
        controller = make_controller(config)

        decision = controller.decide(
            controller.start(search_url()), extraction(has_next=True, pages=[1, 2, 3], page_href=search_url()), search_url()
        )

        assert decision.transition.kind is TransitionKind.CLICK
        assert decision.transition.fallback == Transition(TransitionKind.PAGE_CONTROL, 2, url=search_url(page=2))

    def test_next_link_has_no_fallback(self, config):
        controller = make_controller(config)

        decision = controller.decide(
            controller.start(search_url()),
            extraction(next_href=search_url(page=2), pages=[1, 2, 3], page_href=search_url()),
            search_url(),
        )

        assert decision.transition == Transition(TransitionKind.LINK, 2, url=search_url(page=2))

    def test_disabled_next_stops(self, config):
        controller = make_controller(config)

        decision = controller.decide(controller.start(search_url()), extraction(next_disabled=True), search_url())

        assert decision.transition is None
        assert decision.cursor.stopped_reason is StopReason.NEXT_DISABLED

    def test_no_pagination_completes(self, config):
        controller = make_controller(config)

        decision = controller.decide(controller.start(search_url()), extraction(), search_url())

        assert decision.cursor.stopped_reason is StopReason.COMPLETED

    def test_unfollowable_pagination_is_no_next_page(self, config):
        controller = make_controller(config)
        page = PageExtraction(next_control=NextControl(href=None, clickable=False))

        decision = controller.decide(controller.start(search_url()), page, search_url())

        assert decision.cursor.stopped_reason is StopReason.NO_NEXT_PAGE

    def test_page_link_with_href(self, config):
        controller = make_controller(config)

        decision = controller.decide(
            controller.start(search_url()), extraction(pages=[1, 2, 3], page_href=search_url()), search_url()
        )

        assert decision.transition == Transition(TransitionKind.PAGE_CONTROL, 2, url=search_url(page=2))
        assert decision.cursor.max_page_known == 3

    def test_page_control_without_href_is_clicked(self, config):
        controller = make_controller(config)

        decision = controller.decide(controller.start(search_url()), extraction(pages=[1, 2]), search_url())

        assert decision.transition.kind is TransitionKind.PAGE_CONTROL
        assert decision.transition.selector == '[data-onsale-page="2"]'

    def test_cached_max_page_falls_back_to_url(self, config):
        controller = make_controller(config)
        cursor = PaginationCursor(current_page=2, max_page_known=5, visited_urls=(search_url(),))

        decision = controller.decide(cursor, extraction(pages=[1, 2]), search_url(page=2))

        assert decision.transition == Transition(TransitionKind.URL, 3, url=search_url(page=3))
        assert decision.cursor.max_page_known == 5

    def test_max_page_grows_with_visible_links(self, config):
        controller = make_controller(config)
        cursor = PaginationCursor(current_page=2, max_page_known=3)

        decision = controller.decide(cursor, extraction(pages=[1, 2, 3, 4, 5]), search_url(page=2))

        assert decision.cursor.max_page_known == 5

    def test_last_known_page_stops(self, config):
        controller = make_controller(config)
        cursor = PaginationCursor(current_page=3)

        decision = controller.decide(cursor, extraction(pages=[1, 2, 3]), search_url(page=3))

        assert decision.transition is None
        assert decision.cursor.stopped_reason is StopReason.MAX_PAGE_REACHED

    def test_page_limit_replaces_possible_transition(self, config):
        controller = make_controller(config)
        cursor = PaginationCursor(current_page=config.page_limit)

        decision = controller.decide(cursor, extraction(has_next=True), search_url())

        assert decision.transition is None
        assert decision.cursor.stopped_reason is StopReason.PAGE_LIMIT_REACHED

    def test_page_limit_does_not_mask_natural_end(self, config):
        controller = make_controller(config)
        cursor = PaginationCursor(current_page=config.page_limit)

        decision = controller.decide(cursor, extraction(), search_url())

        assert decision.cursor.stopped_reason is StopReason.COMPLETED

    def test_decide_never_mutates_input_cursor(self, config):
        controller = make_controller(config)
        cursor = controller.start(search_url())

        controller.decide(cursor, extraction(pages=[1, 2, 3]), search_url())

        assert cursor == PaginationCursor(current_page=1, visited_urls=(search_url(),))


class TestAdvance:
    @pytest.mark.asyncio
    async def test_link_transition_reaches_target(self, config):
        surface = FakeSurface({search_url(page=2): listing([card("B")], active=2)})
        controller = make_controller(config, surface)
        cursor = controller.start(search_url())

        result = await controller.advance(cursor, Transition(TransitionKind.LINK, 2, url=search_url(page=2)))

        assert surface.navigations == [search_url(page=2)]
        assert result.cursor.current_page == 2
        assert result.cursor.visited_urls == (search_url(), search_url(page=2))
        assert not result.revisited
        assert not result.cursor.stopped

    @pytest.mark.asyncio
    async def test_active_page_mismatch_stops(self, config):
        surface = FakeSurface({search_url(page=2): listing([card("A")], active=1)})
        controller = make_controller(config, surface)

        result = await controller.advance(
            controller.start(search_url()), Transition(TransitionKind.URL, 2, url=search_url(page=2))
        )

        assert result.cursor.stopped_reason is StopReason.NO_NEXT_PAGE
        assert result.cursor.current_page == 1

    @pytest.mark.asyncio
    async def test_unverifiable_revisit_is_stalled(self, config):
        surface = FakeSurface({search_url(): listing([card("A")])})
        controller = make_controller(config, surface)

        result = await controller.advance(
            controller.start(search_url()), Transition(TransitionKind.LINK, 2, url=search_url())
        )

        assert result.revisited
        assert result.cursor.stopped_reason is StopReason.PAGINATION_STALLED

    @pytest.mark.asyncio
    async def test_verified_click_on_same_url_is_accepted(self, config):
        surface = FakeSurface(
            {search_url(): listing([card("B")], active=2)},
            clicks={(search_url(), "[data-onsale-next]"): search_url()},
            start_url=search_url(),
        )
        controller = make_controller(config, surface)

        result = await controller.advance(
            controller.start(search_url()), Transition(TransitionKind.CLICK, 2, selector="[data-onsale-next]")
        )

        assert surface.clicked == ["[data-onsale-next]"]
        assert result.revisited
        assert result.cursor.current_page == 2
        assert result.cursor.visited_urls == (search_url(),)
        assert not result.cursor.stopped

    @pytest.mark.asyncio
    async def test_click_on_wrong_page_uses_fallback(self, config):
        surface = FakeSurface(
            {
                search_url(): listing([card("A")], active=1),
                search_url(page=2): listing([card("B")], active=2),
            },
            clicks={(search_url(), "[data-onsale-next]"): search_url()},
            start_url=search_url(),
        )
        controller = make_controller(config, surface)
        fallback = Transition(TransitionKind.PAGE_CONTROL, 2, url=search_url(page=2))

        result = await controller.advance(
            controller.start(search_url()),
            Transition(TransitionKind.CLICK, 2, selector="[data-onsale-next]", fallback=fallback),
        )

        assert surface.clicked == ["[data-onsale-next]"]
        assert surface.navigations == [search_url(page=2)]
        assert result.transition == fallback
        assert result.cursor.current_page == 2
        assert result.cursor.visited_urls == (search_url(), search_url(page=2))
        assert not result.cursor.stopped

    @pytest.mark.asyncio
    async def test_unverified_click_revisit_uses_fallback(self, config):
        surface = FakeSurface(
            {
                search_url(): listing([card("A")]),
                search_url(page=2): listing([card("B")]),
            },
            clicks={(search_url(), "[data-onsale-next]"): search_url()},
            start_url=search_url(),
        )
        controller = make_controller(config, surface)
        fallback = Transition(TransitionKind.URL, 2, url=search_url(page=2))

        result = await controller.advance(
            controller.start(search_url()),
            Transition(TransitionKind.CLICK, 2, selector="[data-onsale-next]", fallback=fallback),
        )

        assert surface.navigations == [search_url(page=2)]
        assert result.transition == fallback
        assert result.cursor.current_page == 2
        assert not result.revisited

    @pytest.mark.asyncio
    async def test_custom_readiness_hook_is_used(self, config):
        labels = []

        async def ready(label):
            labels.append(label)

        surface = FakeSurface({search_url(page=2): listing([card("B")], active=2)})
        controller = PaginationController(surface, config, search_url(), wait_ready=ready)

        await controller.advance(
            controller.start(search_url()), Transition(TransitionKind.URL, 2, url=search_url(page=2))
        )

        assert labels == ["page-2"]


@pytest.mark.asyncio
async def test_visits_every_page_once_then_stops_at_max(config):
    last = 4
    pages = {
        search_url(page=n): listing([card(f"Item {n}")], pages=list(range(1, last + 1)), page_href=search_url(), active=n)
        for n in range(2, last + 1)
    }
    pages[search_url()] = listing([card("Item 1")], pages=list(range(1, last + 1)), page_href=search_url(), active=1)
    surface = FakeSurface(pages)
    controller = make_controller(config, surface)
    await surface.navigate(search_url())
    cursor = controller.start(search_url())
    seen = [cursor.current_page]

    while True:
        page = await extract_page(surface, config.selectors, config.page_param)
        decision = controller.decide(cursor, page, surface.url)
        if decision.transition is None:
            cursor = decision.cursor
            break
        cursor = (await controller.advance(decision.cursor, decision.transition)).cursor
        seen.append(cursor.current_page)

    assert seen == [1, 2, 3, 4]
    assert cursor.stopped_reason is StopReason.MAX_PAGE_REACHED
    assert len(set(cursor.visited_urls)) == len(cursor.visited_urls) == last
    assert cursor.current_page == last
