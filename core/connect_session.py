"""
ConnectSession — one dashboard session's connect component.

Wires the token cache, catalog search and connect flow together for one
external user and records the notifications meant for the hosting page.
``SessionStore`` keeps the live sessions in process memory.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Callable, Dict, List, Optional

import httpx

from config.settings import Settings, config
from connectors.catalog import CatalogClient
from connectors.errors import ConnectInProgress, TokenUnavailable
from connectors.widget import ConnectLinkWidget, ConnectWidget
from core.account_resolver import AccountLister, AccountResolver
from core.catalog_search import CatalogSearchController
from core.connect_flow import ConnectFlowController
from core.token_cache import TokenIssuer, TokenCache
from utils.schemas import (
    CatalogEntry,
    HandshakeResult,
    SessionEvent,
    SessionSnapshot,
)

logger = logging.getLogger(__name__)

INIT_ERROR = "Failed to initialize connect integration"


class ConnectSession:
    def __init__(
        self,
        session_id: str,
        external_user_id: str,
        *,
        issuer: TokenIssuer,
        lister: AccountLister,
        widget: Optional[ConnectWidget] = None,
        settings: Optional[Settings] = None,
        catalog_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or config
        self._catalog_transport = catalog_transport

        self.session_id = session_id
        self.external_user_id = external_user_id
        self.tokens = TokenCache(
            issuer,
            external_user_id,
            refresh_skew=self._settings.token_refresh_skew_seconds,
        )
        self.widget = widget or ConnectLinkWidget(
            self._settings.connect_redirect_base,
            timeout=self._settings.handshake_timeout_seconds,
            on_open=self._handshake_opened,
        )
        self.flow = ConnectFlowController(
            self.tokens,
            self.widget,
            AccountResolver(lister, external_user_id),
            on_account_connected=self._account_connected,
            on_error=self._error,
        )
        self.search: Optional[CatalogSearchController] = None

        self.selected: Optional[CatalogEntry] = None
        self.error: Optional[str] = None
        self.connect_url: Optional[str] = None
        self.handshake_id: Optional[str] = None
        self.events: List[SessionEvent] = []

        self._connect_task: Optional[asyncio.Task] = None
        self._opened = asyncio.Event()

    @property
    def ready(self) -> bool:
        return self.search is not None

    # ── lifecycle ───────────────────────────────────────────────────────

    async def mount(self) -> bool:
        """
        Prime the token cache once and build the catalog client on top of it.
        Returns False (and records an error) when no token could be obtained.
        """
        if self.search is not None:
            return True
        try:
            await self.tokens.ensure_fresh_token()
        except TokenUnavailable as exc:
            logger.error("Session %s could not be initialised: %s", self.session_id, exc)
            self._error(INIT_ERROR)
            return False

        client = CatalogClient(
            self.tokens.ensure_fresh_token,
            self._settings,
            transport=self._catalog_transport,
        )
        self.search = CatalogSearchController(
            client,
            debounce=self._settings.search_debounce_ms / 1000,
            page_size=self._settings.search_page_size,
        )
        logger.info("Session %s mounted for %s", self.session_id, self.external_user_id)
        return True

    async def close(self) -> None:
        if self.search is not None:
            self.search.on_query_changed("")
        task = self._connect_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    # ── selection ───────────────────────────────────────────────────────

    def select(self, slug: str) -> CatalogEntry:
        """Pick an entry from the current results.  KeyError if not listed."""
        results = self.search.results if self.search else []
        for entry in results:
            if entry.slug == slug:
                self.selected = entry
                self.error = None
                if self.search is not None:
                    self.search.visible = False
                return entry
        raise KeyError(slug)

    def reset(self) -> None:
        self.flow.reset()
        self.selected = None
        self.error = None
        self.connect_url = None
        self.handshake_id = None

    # ── connect ─────────────────────────────────────────────────────────

    async def connect(self) -> SessionSnapshot:
        """
        Start the connect flow for the selected entry in the background and
        return once the widget has been opened or the attempt has ended.
        """
        if self.selected is None:
            raise ValueError("No app selected")
        if self.flow.busy:
            raise ConnectInProgress("Connect attempt already in progress")

        self.connect_url = None
        self.handshake_id = None
        self._opened.clear()
        task = asyncio.ensure_future(self.flow.start_connect(self.selected))
        self._connect_task = task
        opened = asyncio.ensure_future(self._opened.wait())
        try:
            await asyncio.wait({task, opened}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            opened.cancel()
        return self.snapshot()

    def complete_handshake(self, handshake_id: str, result: HandshakeResult) -> bool:
        if not isinstance(self.widget, ConnectLinkWidget):
            return False
        if handshake_id not in self.widget.pending():
            return False
        return self.widget.complete(handshake_id, result)

    async def wait_for_connect(self) -> None:
        task = self._connect_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        await self.flow.wait_for_rotation()

    # ── host notifications ──────────────────────────────────────────────

    def _handshake_opened(self, handshake_id: str, url: str) -> None:
        self.handshake_id = handshake_id
        self.connect_url = url
        self._opened.set()

    def _account_connected(self, account_id: str, account_name: str, app_slug: str) -> None:
        self.events.append(
            SessionEvent(
                kind="account_connected",
                account_id=account_id,
                account_name=account_name,
                app_slug=app_slug,
            )
        )

    def _error(self, message: str) -> None:
        self.error = message
        self.events.append(SessionEvent(kind="error", message=message))

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            external_user_id=self.external_user_id,
            ready=self.ready,
            token_valid=self.tokens.is_valid(),
            error=self.error,
            selected=self.selected,
            state=self.flow.state,
            attempt=self.flow.attempt,
            account=self.flow.account,
            connect_url=self.connect_url,
            handshake_id=self.handshake_id,
            events=list(self.events),
        )


class SessionStore:
    """
    In-memory session registry, keyed by session id.

    A reload of the hosting page abandons its session without a DELETE, so
    sessions untouched for ``idle_ttl`` seconds are closed and dropped by
    ``evict_idle``.  Sessions with a connect attempt in progress are kept.
    """

    def __init__(
        self,
        session_factory: Callable[[str, str], ConnectSession],
        *,
        idle_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = session_factory
        self._idle_ttl = idle_ttl
        self._clock = clock
        self._sessions: Dict[str, ConnectSession] = {}
        self._touched: Dict[str, float] = {}

    async def create(self, external_user_id: str) -> ConnectSession:
        await self.evict_idle()
        session_id = uuid.uuid4().hex
        session = self._factory(session_id, external_user_id)
        self._sessions[session_id] = session
        self._touched[session_id] = self._clock()
        await session.mount()
        return session

    def get(self, session_id: str) -> ConnectSession:
        session = self._sessions[session_id]
        self._touched[session_id] = self._clock()
        return session

    async def remove(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        self._touched.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        return True

    async def evict_idle(self) -> int:
        """Close sessions idle for longer than ``idle_ttl``.  Returns how many."""
        if not self._idle_ttl:
            return 0
        cutoff = self._clock() - self._idle_ttl
        stale = [
            sid
            for sid, session in self._sessions.items()
            if self._touched.get(sid, 0.0) < cutoff and not session.flow.busy
        ]
        for sid in stale:
            await self.remove(sid)
        if stale:
            logger.info("Evicted %d idle session(s)", len(stale))
        return len(stale)

    def complete_handshake(self, handshake_id: str, result: HandshakeResult) -> bool:
        for session in self._sessions.values():
            if session.complete_handshake(handshake_id, result):
                return True
        logger.warning("No session owns handshake %s", handshake_id)
        return False

    def __len__(self) -> int:
        return len(self._sessions)
