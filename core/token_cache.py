"""
TokenCache — owns the single live connect token of one session.

Single writer: only the cache replaces its token.  Readers (the catalog
client, the connect flow) always go through ``ensure_fresh_token`` so they
never see an expired token.  Overlapping refreshes share one broker call.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from connectors.errors import TokenUnavailable
from utils.schemas import ConnectToken

logger = logging.getLogger(__name__)


class TokenIssuer(Protocol):
    async def create_token(self, external_user_id: str) -> ConnectToken: ...


Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCache:
    def __init__(
        self,
        issuer: TokenIssuer,
        external_user_id: str,
        *,
        refresh_skew: float = 0,
        clock: Clock = _utcnow,
    ):
        """
        Parameters
        ----------
        issuer           : anything with ``async create_token(external_user_id)``.
        external_user_id : the user this cache is bound to for its lifetime.
        refresh_skew     : seconds before ``expires_at`` at which a token is
                           already treated as stale.
        clock            : returns the current tz-aware time.
        """
        if not external_user_id:
            raise ValueError("external_user_id is required")
        self._issuer = issuer
        self._external_user_id = external_user_id
        self._skew = timedelta(seconds=refresh_skew)
        self._clock = clock
        self._token: Optional[ConnectToken] = None
        self._inflight: Optional[asyncio.Future] = None

    # ── read side ───────────────────────────────────────────────────────

    @property
    def external_user_id(self) -> str:
        return self._external_user_id

    @property
    def current(self) -> Optional[ConnectToken]:
        """Last stored token.  May be stale; consumers use ``ensure_fresh_token``."""
        return self._token

    @property
    def refreshing(self) -> bool:
        return self._inflight is not None

    def is_valid(self) -> bool:
        return self._token is not None and self._fresh(self._token)

    def _fresh(self, token: ConnectToken) -> bool:
        return token.expires_at - self._skew > self._clock()

    def _check_user(self, external_user_id: Optional[str]) -> None:
        if external_user_id is not None and external_user_id != self._external_user_id:
            raise ValueError(
                f"Token cache is bound to {self._external_user_id!r}, not {external_user_id!r}"
            )

    # ── write side ──────────────────────────────────────────────────────

    async def ensure_fresh_token(self, external_user_id: Optional[str] = None) -> ConnectToken:
        """Return the cached token if still valid, otherwise refresh it first."""
        self._check_user(external_user_id)
        token = self._token
        if token is not None and self._fresh(token):
            return token
        return await self._refresh("refresh" if token else "initial")

    async def rotate(self, external_user_id: Optional[str] = None) -> ConnectToken:
        """Replace the token unconditionally (after it was used for a connect)."""
        self._check_user(external_user_id)
        return await self._refresh("rotation")

    async def _refresh(self, reason: str) -> ConnectToken:
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._issue(reason))
        else:
            logger.debug("Joining in-flight token request (%s)", reason)
        # shield: a cancelled consumer must not cancel the shared request
        return await asyncio.shield(self._inflight)

    async def _issue(self, reason: str) -> ConnectToken:
        try:
            token = await self._issuer.create_token(self._external_user_id)
        except Exception as exc:
            last = self._token
            if last is not None and self._fresh(last):
                logger.warning(
                    "Token %s failed for %s, keeping last-known token: %s",
                    reason, self._external_user_id, exc,
                )
                return last
            logger.error("Token %s failed for %s: %s", reason, self._external_user_id, exc)
            raise TokenUnavailable(f"Failed to obtain connect token: {exc}") from exc
        finally:
            self._inflight = None

        if not self._fresh(token):
            raise TokenUnavailable("Broker issued a token that is already expired")

        self._token = token
        logger.info(
            "Connect token %s for %s (expires %s)",
            reason, self._external_user_id, token.expires_at.isoformat(),
        )
        return token
