"""
CatalogSearchController — debounced, paginated catalog search.

Every search carries the query it was issued for.  When a response comes
back the controller compares that tag with the live query and drops the
response if the user has moved on; in-flight requests are never aborted.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional

from connectors.catalog import AppsPage, CatalogClient
from connectors.errors import SearchUnavailable
from utils.schemas import CatalogEntry, SearchSession

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.3
DEFAULT_PAGE_SIZE = 10


def connectable_page(entries: Iterable[CatalogEntry], page_size: int) -> List[CatalogEntry]:
    """Drop entries without an auth type, remove repeats, keep ``page_size``."""
    seen: set[str] = set()
    out: List[CatalogEntry] = []
    for entry in entries:
        if not entry.connectable or entry.slug in seen:
            continue
        seen.add(entry.slug)
        out.append(entry)
    return out[:page_size]


class CatalogSearchController:
    def __init__(
        self,
        client: CatalogClient,
        *,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self._client = client
        self._debounce = debounce
        self._page_size = page_size

        self._session: Optional[SearchSession] = None
        self._page: Optional[AppsPage] = None
        self._live_query: Optional[str] = None

        self._timer: Optional[asyncio.TimerHandle] = None
        self._search_task: Optional[asyncio.Task] = None
        self._loading_more = False

        self.visible = False
        self.is_searching = False

    # ── state ───────────────────────────────────────────────────────────

    @property
    def session(self) -> Optional[SearchSession]:
        return self._session

    @property
    def results(self) -> List[CatalogEntry]:
        return list(self._session.accumulated_results) if self._session else []

    @property
    def has_more(self) -> bool:
        return bool(self._session and self._session.has_more)

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def live_query(self) -> Optional[str]:
        return self._live_query

    # ── keystrokes ──────────────────────────────────────────────────────

    def on_query_changed(self, text: str) -> None:
        """
        Input handler.  Restarts the debounce timer; an empty query clears
        the session and hides the results.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if not text:
            self._live_query = None
            self._session = None
            self._page = None
            self.visible = False
            self.is_searching = False
            return

        # anything still in flight for an older query is now stale
        self._live_query = text
        self.visible = True
        self.is_searching = True
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._debounce, self._fire, text)

    def _fire(self, text: str) -> None:
        self._timer = None
        self._search_task = asyncio.ensure_future(self._debounced_search(text))

    async def _debounced_search(self, text: str) -> None:
        try:
            await self.search(text, self._page_size)
        finally:
            if self._live_query == text:
                self.is_searching = False

    async def settle(self) -> None:
        """Wait until the pending debounced search (if any) has completed."""
        loop = asyncio.get_running_loop()
        while self._timer is not None:
            await asyncio.sleep(max(0.0, self._timer.when() - loop.time()))
        task = self._search_task
        if task is not None and not task.done():
            await task

    # ── queries ─────────────────────────────────────────────────────────

    async def search(self, query: Optional[str], page_size: int = DEFAULT_PAGE_SIZE) -> List[CatalogEntry]:
        """
        Fresh search (cursor reset).  Over-fetches ``2 * page_size`` so the
        page is usually still full after non-connectable apps are removed.
        """
        tag = query or ""
        self._live_query = tag
        self._page_size = page_size
        self.visible = True

        try:
            page = await self._client.list_apps(q=query or None, limit=page_size * 2)
        except SearchUnavailable as exc:
            if self._live_query != tag:
                return []
            logger.warning("Search for %r unavailable: %s", tag, exc)
            self._page = None
            self._session = SearchSession(query=tag, has_more=False)
            return []

        if self._live_query != tag:
            logger.debug("Dropping stale search results for %r (live query %r)", tag, self._live_query)
            return []

        visible = connectable_page(page.data, page_size)
        self._page = page
        self._session = SearchSession(
            query=tag,
            cursor=page.cursor,
            accumulated_results=visible,
            has_more=page.has_next_page(),
        )
        return visible

    async def load_more(self) -> List[CatalogEntry]:
        """Advance the cursor of the current search and append unseen apps."""
        session = self._session
        page = self._page
        if session is None or page is None or not session.has_more or self._loading_more:
            return []

        self._loading_more = True
        try:
            if not page.has_next_page():
                session.has_more = False
                return []
            try:
                await page.get_next_page()
            except SearchUnavailable as exc:
                logger.warning("Load-more for %r unavailable: %s", session.query, exc)
                if self._session is session:
                    session.has_more = False
                return []

            if self._session is not session or self._live_query != session.query:
                logger.debug("Dropping stale page for %r", session.query)
                return []

            seen = session.seen_slugs()
            added = [e for e in connectable_page(page.data, self._page_size) if e.slug not in seen]
            session.accumulated_results.extend(added)
            session.cursor = page.cursor
            session.has_more = page.has_next_page()
            return added
        finally:
            self._loading_more = False
