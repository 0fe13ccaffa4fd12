"""
Tests for the debounced, paginated catalog search controller.
"""

import asyncio

import pytest

from connectors.errors import SearchUnavailable
from core.catalog_search import CatalogSearchController, connectable_page
from utils.schemas import CatalogEntry


def _entry(slug: str, weight: float = 0.0, auth_type="oauth") -> CatalogEntry:
    return CatalogEntry(
        slug=slug,
        display_name=slug.replace("_", " ").title(),
        icon_url=f"https://assets.example.com/{slug}.svg",
        auth_type=auth_type,
        featured_weight=weight,
    )


class FakePage:
    def __init__(self, pages, delay=0.0):
        self._pages = pages
        self.delay = delay
        self._index = 0
        self.data = pages[0]

    @property
    def cursor(self):
        return f"cursor_{self._index}"

    def has_next_page(self):
        return self._index + 1 < len(self._pages)

    async def get_next_page(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        self._index += 1
        self.data = self._pages[self._index]
        return self


class FakeCatalogClient:
    def __init__(self, pages_by_query=None, delays=None, page_delay=0.0):
        self.pages_by_query = pages_by_query or {}
        self.page_delay = page_delay
        self.delays = delays or {}
        self.calls = []
        self.fail = False

    async def list_apps(self, *, q=None, limit=20, sort_key="featured_weight", sort_direction="desc"):
        self.calls.append((q, limit))
        delay = self.delays.get(q, 0)
        if delay:
            await asyncio.sleep(delay)
        if self.fail:
            raise SearchUnavailable("catalog down")
        return FakePage(self.pages_by_query.get(q, [[]]), delay=self.page_delay)


def _sheet_page():
    """20 raw entries in descending featured weight; 3 are not connectable."""
    entries = []
    for i in range(20):
        auth = None if i in (2, 5, 11) else "oauth"
        entries.append(_entry(f"sheet_app_{i:02d}", weight=100 - i, auth_type=auth))
    return entries


class TestSearch:
    @pytest.mark.asyncio
    async def test_sheet_scenario_filters_and_truncates(self):
        raw = _sheet_page()
        client = FakeCatalogClient({"sheet": [raw, [_entry("sheet_more", 1)]]})
        ctrl = CatalogSearchController(client)

        results = await ctrl.search("sheet", 10)

        expected = [e for e in raw if e.auth_type is not None][:10]
        assert results == expected
        assert [e.featured_weight for e in results] == sorted(
            (e.featured_weight for e in results), reverse=True
        )
        assert ctrl.has_more is True
        assert ctrl.session.accumulated_results == expected
        assert client.calls == [("sheet", 20)]

    @pytest.mark.asyncio
    async def test_non_connectable_entries_never_returned(self):
        page1 = [_entry("a", auth_type=None), _entry("b"), _entry("c", auth_type=None)]
        page2 = [_entry("d", auth_type=None), _entry("e")]
        ctrl = CatalogSearchController(FakeCatalogClient({"x": [page1, page2]}))

        first = await ctrl.search("x", 10)
        more = await ctrl.load_more()

        assert [e.slug for e in first] == ["b"]
        assert [e.slug for e in more] == ["e"]
        assert all(e.auth_type is not None for e in ctrl.results)

    @pytest.mark.asyncio
    async def test_empty_query_lists_catalog(self):
        client = FakeCatalogClient({None: [[_entry("slack")]]})
        ctrl = CatalogSearchController(client)
        results = await ctrl.search(None, 5)
        assert [e.slug for e in results] == ["slack"]
        assert client.calls == [(None, 10)]

    @pytest.mark.asyncio
    async def test_catalog_failure_degrades_to_no_results(self):
        client = FakeCatalogClient()
        client.fail = True
        ctrl = CatalogSearchController(client)

        assert await ctrl.search("slack", 10) == []
        assert ctrl.results == []
        assert ctrl.has_more is False
        assert await ctrl.load_more() == []

    @pytest.mark.asyncio
    async def test_stale_response_is_dropped(self):
        client = FakeCatalogClient(
            {"a": [[_entry("asana")]], "ab": [[_entry("abacus")]]},
            delays={"a": 0.05},
        )
        ctrl = CatalogSearchController(client)

        slow = asyncio.ensure_future(ctrl.search("a", 10))
        await asyncio.sleep(0)
        fast = await ctrl.search("ab", 10)
        stale = await slow

        assert stale == []
        assert [e.slug for e in fast] == ["abacus"]
        assert ctrl.session.query == "ab"
        assert [e.slug for e in ctrl.results] == ["abacus"]


class TestLoadMore:
    @pytest.mark.asyncio
    async def test_without_prior_search_returns_empty(self):
        ctrl = CatalogSearchController(FakeCatalogClient())
        assert await ctrl.load_more() == []
        assert ctrl.session is None

    @pytest.mark.asyncio
    async def test_appends_only_unseen_slugs(self):
        page1 = [_entry("slack"), _entry("gmail")]
        page2 = [_entry("gmail"), _entry("notion")]
        ctrl = CatalogSearchController(FakeCatalogClient({"q": [page1, page2, [_entry("jira")]]}))

        await ctrl.search("q", 10)
        added = await ctrl.load_more()

        assert [e.slug for e in added] == ["notion"]
        assert [e.slug for e in ctrl.results] == ["slack", "gmail", "notion"]
        assert ctrl.session.cursor == "cursor_1"
        assert ctrl.has_more is True

    @pytest.mark.asyncio
    async def test_second_call_after_exhaustion_is_noop(self):
        ctrl = CatalogSearchController(
            FakeCatalogClient({"q": [[_entry("slack")], [_entry("gmail")]]})
        )
        await ctrl.search("q", 10)

        first = await ctrl.load_more()
        assert [e.slug for e in first] == ["gmail"]
        assert ctrl.has_more is False
        snapshot = list(ctrl.results)

        second = await ctrl.load_more()
        assert second == []
        assert ctrl.results == snapshot

    @pytest.mark.asyncio
    async def test_page_for_abandoned_query_is_dropped(self):
        ctrl = CatalogSearchController(
            FakeCatalogClient({"q": [[_entry("slack")], [_entry("gmail")]]}, page_delay=0.02),
        )
        await ctrl.search("q", 10)

        pending = asyncio.ensure_future(ctrl.load_more())
        await asyncio.sleep(0)  # load_more is now waiting on the next page
        ctrl.on_query_changed("")
        assert await pending == []
        assert ctrl.session is None


class TestDebounce:
    @pytest.mark.asyncio
    async def test_keystrokes_within_window_issue_one_search(self):
        client = FakeCatalogClient({"ab": [[_entry("abacus")]]})
        ctrl = CatalogSearchController(client, debounce=0.02)

        ctrl.on_query_changed("a")
        ctrl.on_query_changed("ab")
        assert ctrl.is_searching is True
        await ctrl.settle()

        assert client.calls == [("ab", 20)]
        assert [e.slug for e in ctrl.results] == ["abacus"]
        assert ctrl.is_searching is False

    @pytest.mark.asyncio
    async def test_clearing_query_cancels_timer_and_hides(self):
        client = FakeCatalogClient({"sl": [[_entry("slack")]]})
        ctrl = CatalogSearchController(client, debounce=0.01)

        ctrl.on_query_changed("sl")
        await ctrl.settle()
        assert ctrl.visible is True

        ctrl.on_query_changed("s")
        ctrl.on_query_changed("")
        await asyncio.sleep(0.03)

        assert client.calls == [("sl", 20)]
        assert ctrl.session is None
        assert ctrl.visible is False
        assert ctrl.results == []


class TestConnectablePage:
    def test_truncates_after_filtering(self):
        entries = [_entry(str(i), auth_type=None if i % 2 else "keys") for i in range(10)]
        page = connectable_page(entries, 3)
        assert [e.slug for e in page] == ["0", "2", "4"]
