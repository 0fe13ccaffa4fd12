"""
Connect widgets — the authorization UI collaborator.

A widget receives the target app and the current connect token, runs the
interactive authorization however it likes, and reports exactly one
``HandshakeResult``: succeeded (with the new account id), failed (with the
widget's message) or closed by the user.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from utils.schemas import ConnectToken, HandshakeFailed, HandshakeResult

logger = logging.getLogger(__name__)

OpenCallback = Callable[[str, str], None]


class ConnectWidget(ABC):
    """Abstract base for handshake widgets."""

    @abstractmethod
    async def connect_account(self, app_slug: str, token: ConnectToken) -> HandshakeResult:
        """
        Run the handshake for ``app_slug`` and return its outcome.

        Must not raise for user-facing outcomes; failures are reported as
        ``HandshakeFailed`` and user closure as ``HandshakeClosed``.
        """
        ...


class ConnectLinkWidget(ConnectWidget):
    """
    Widget backed by the broker's hosted connect link.

    ``connect_account`` builds the link for the app, hands it to
    ``on_open`` and waits until ``complete`` is called for the handshake
    (normally by the ``/connect/callback`` route).
    """

    def __init__(
        self,
        redirect_base: str,
        *,
        timeout: Optional[float] = None,
        on_open: Optional[OpenCallback] = None,
    ):
        self._redirect_base = redirect_base.rstrip("/")
        self._timeout = timeout
        self._on_open = on_open
        self._pending: Dict[str, asyncio.Future] = {}
        self._urls: Dict[str, str] = {}

    def _callback_url(self, handshake_id: str, status: str) -> str:
        query = urlencode({"handshake_id": handshake_id, "status": status})
        return f"{self._redirect_base}/api/v1/connect/callback?{query}"

    def build_url(self, app_slug: str, token: ConnectToken, handshake_id: str) -> str:
        """Add app and redirect parameters to the token's connect link."""
        parts = urlsplit(token.connect_link_url)
        params = dict(parse_qsl(parts.query))
        params.update(
            {
                "app": app_slug,
                "success_redirect_uri": self._callback_url(handshake_id, "success"),
                "error_redirect_uri": self._callback_url(handshake_id, "error"),
            }
        )
        return urlunsplit(parts._replace(query=urlencode(params)))

    def url_for(self, handshake_id: str) -> Optional[str]:
        return self._urls.get(handshake_id)

    def pending(self) -> List[str]:
        return list(self._pending)

    async def connect_account(self, app_slug: str, token: ConnectToken) -> HandshakeResult:
        handshake_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[handshake_id] = future
        url = self.build_url(app_slug, token, handshake_id)
        self._urls[handshake_id] = url
        logger.info("Handshake %s opened for %s", handshake_id, app_slug)

        if self._on_open is not None:
            self._on_open(handshake_id, url)

        try:
            if self._timeout:
                return await asyncio.wait_for(future, self._timeout)
            return await future
        except asyncio.TimeoutError:
            logger.warning("Handshake %s for %s timed out", handshake_id, app_slug)
            return HandshakeFailed(message="Connection timed out")
        finally:
            self._pending.pop(handshake_id, None)
            self._urls.pop(handshake_id, None)

    def complete(self, handshake_id: str, result: HandshakeResult) -> bool:
        """Deliver the outcome of a handshake.  False if unknown or already done."""
        future = self._pending.get(handshake_id)
        if future is None or future.done():
            logger.warning("Ignoring outcome for unknown handshake %s", handshake_id)
            return False
        future.set_result(result)
        return True
