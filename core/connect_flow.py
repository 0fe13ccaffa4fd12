"""
ConnectFlowController — the account-linking state machine.

    idle ──start_connect──▶ awaiting_token ──token──▶ handshaking
    handshaking ──succeeded──▶ resolving_account ──resolved──▶ succeeded
    handshaking ──failed────▶ failed
    handshaking ──closed────▶ idle            (cancellation, not an error)
    awaiting_token / resolving_account ──error──▶ failed

Only one attempt can be pending.  Widget outcomes are consumed by a single
transition function (``_apply_handshake``) so that rule lives in one place.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Union

from connectors.errors import (
    AccountResolutionFailed,
    ConnectInProgress,
    HandshakeCancelled,
    HandshakeError,
    TokenUnavailable,
)
from connectors.widget import ConnectWidget
from core.account_resolver import AccountResolver
from core.token_cache import TokenCache
from utils.schemas import (
    BUSY_STATES,
    AttemptStatus,
    CatalogEntry,
    ConnectAttempt,
    ConnectState,
    HandshakeClosed,
    HandshakeFailed,
    HandshakeResult,
    HandshakeSucceeded,
    LinkedAccount,
)

logger = logging.getLogger(__name__)

# (account_id, account_name, app_slug)
AccountConnectedCallback = Callable[[str, str, str], Any]
ErrorCallback = Callable[[str], Any]


class ConnectFlowController:
    def __init__(
        self,
        token_cache: TokenCache,
        widget: ConnectWidget,
        resolver: AccountResolver,
        *,
        on_account_connected: Optional[AccountConnectedCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self._tokens = token_cache
        self._widget = widget
        self._resolver = resolver
        self._on_account_connected = on_account_connected
        self._on_error = on_error

        self.state = ConnectState.IDLE
        self.attempt: Optional[ConnectAttempt] = None
        self.account: Optional[LinkedAccount] = None
        self.error: Optional[str] = None
        self._rotation_task: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        return self.state in BUSY_STATES

    def _transition(self, state: ConnectState) -> None:
        logger.debug("Connect flow %s → %s", self.state.value, state.value)
        self.state = state

    # ── public API ──────────────────────────────────────────────────────

    async def start_connect(self, entry: Union[CatalogEntry, str]) -> ConnectAttempt:
        """
        Run one connect attempt for ``entry`` to completion.

        Raises ``ConnectInProgress`` if another attempt is still pending;
        every other problem ends up in the returned attempt's status.
        """
        slug = entry.slug if isinstance(entry, CatalogEntry) else entry
        if self.busy:
            raise ConnectInProgress(
                f"Connect attempt for {self.attempt.target_slug if self.attempt else '?'} already in progress"
            )

        attempt = ConnectAttempt(target_slug=slug, status=AttemptStatus.PENDING)
        self.attempt = attempt
        self.account = None
        self.error = None
        self._transition(ConnectState.AWAITING_TOKEN)

        try:
            token = await self._tokens.ensure_fresh_token()
        except TokenUnavailable as exc:
            await self._fail(attempt, str(exc))
            return attempt

        self._transition(ConnectState.HANDSHAKING)
        try:
            result = await self._widget.connect_account(slug, token)
        except HandshakeCancelled:
            result = HandshakeClosed()
        except HandshakeError as exc:
            result = HandshakeFailed(message=str(exc))
        except Exception as exc:
            logger.exception("Widget raised during handshake for %s", slug)
            result = HandshakeFailed(message=str(exc) or "Connection failed")

        await self._apply_handshake(attempt, result)
        return attempt

    def reset(self) -> None:
        """Return to idle after a finished attempt, forgetting its outcome."""
        if self.busy:
            raise ConnectInProgress("Cannot reset while a connect attempt is pending")
        self.attempt = None
        self.account = None
        self.error = None
        self._transition(ConnectState.IDLE)

    async def wait_for_rotation(self) -> None:
        task = self._rotation_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ── transitions ─────────────────────────────────────────────────────

    async def _apply_handshake(self, attempt: ConnectAttempt, result: HandshakeResult) -> None:
        if isinstance(result, HandshakeClosed):
            logger.info("Handshake for %s closed by the user", attempt.target_slug)
            attempt.status = AttemptStatus.CANCELLED
            self._transition(ConnectState.IDLE)
            return

        if isinstance(result, HandshakeFailed):
            logger.warning("Handshake for %s failed: %s", attempt.target_slug, result.message)
            await self._fail(attempt, result.message)
            return

        if not isinstance(result, HandshakeSucceeded):
            await self._fail(attempt, f"Unexpected handshake result: {result!r}")
            return

        self._transition(ConnectState.RESOLVING_ACCOUNT)
        try:
            account = await self._resolver.resolve(result.account_id, attempt.target_slug)
        except AccountResolutionFailed as exc:
            await self._fail(attempt, str(exc))
            return

        self.account = account
        attempt.status = AttemptStatus.SUCCEEDED
        self._transition(ConnectState.SUCCEEDED)
        logger.info("Connected %s account %s", attempt.target_slug, account.id)

        await self._notify(self._on_account_connected, account.id, account.display_name, attempt.target_slug)
        # tokens are single-use per link; rotate only after the host was told
        self._rotation_task = asyncio.ensure_future(self._rotate())

    async def _fail(self, attempt: ConnectAttempt, message: str) -> None:
        attempt.status = AttemptStatus.FAILED
        attempt.error = message
        self.error = message
        self._transition(ConnectState.FAILED)
        await self._notify(self._on_error, message)

    async def _rotate(self) -> None:
        try:
            await self._tokens.rotate()
        except Exception as exc:
            logger.warning("Token rotation after connect failed: %s", exc)

    async def _notify(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            ret = callback(*args)
            if inspect.isawaitable(ret):
                await ret
        except Exception:
            logger.exception("Host callback %s failed", getattr(callback, "__name__", callback))
