"""
BrokerClient — server-side access to the connect broker.

Authenticates with the project's OAuth client credentials and exposes the
two calls the portal needs on the server:

  • create_token   — issue a connect token for an external user
  • list_accounts  — list the accounts linked by an external user
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from config.settings import Settings, config
from connectors.errors import BrokerError, BrokerNotConfigured
from utils.schemas import ConnectToken

logger = logging.getLogger(__name__)

_OAUTH_PATH = "/v1/oauth/token"
_ACCESS_TOKEN_BUFFER = timedelta(seconds=60)


class BrokerClient:
    """OAuth client-credentials client for the broker's Connect API."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or config
        if not self._settings.broker_configured():
            raise BrokerNotConfigured(
                "Broker client not configured. Please check environment variables."
            )
        self._transport = transport
        self._access_token: Optional[str] = None
        self._access_expires_at: Optional[datetime] = None
        self._auth_lock = asyncio.Lock()

    @property
    def project_id(self) -> str:
        return self._settings.pipedream_project_id

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._settings.broker_api_base,
            transport=self._transport,
        )

    # ── Auth ────────────────────────────────────────────────────────────

    async def _get_access_token(self) -> str:
        """Return a cached broker access token, fetching a new one when stale."""
        async with self._auth_lock:
            now = datetime.now(timezone.utc)
            if (
                self._access_token
                and self._access_expires_at
                and self._access_expires_at - _ACCESS_TOKEN_BUFFER > now
            ):
                return self._access_token

            async with self._client() as client:
                resp = await client.post(
                    _OAUTH_PATH,
                    json={
                        "grant_type": "client_credentials",
                        "client_id": self._settings.pipedream_client_id,
                        "client_secret": self._settings.pipedream_client_secret,
                    },
                )
            data = _json_or_raise(resp, "OAuth token request failed")

            self._access_token = data["access_token"]
            self._access_expires_at = now + timedelta(seconds=data.get("expires_in", 3600))
            logger.debug("Obtained broker access token (expires %s)", self._access_expires_at)
            return self._access_token

    async def _headers(self) -> Dict[str, str]:
        token = await self._get_access_token()
        return {
            "Authorization": f"Bearer {token}",
            "X-PD-Environment": self._settings.pipedream_project_environment,
        }

    # ── Connect API ─────────────────────────────────────────────────────

    async def create_token(self, external_user_id: str) -> ConnectToken:
        """Issue a connect token scoped to ``external_user_id``."""
        headers = await self._headers()
        async with self._client() as client:
            resp = await client.post(
                f"/v1/connect/{self.project_id}/tokens",
                json={"external_user_id": external_user_id},
                headers=headers,
            )
        data = _json_or_raise(resp, "Token creation failed")
        logger.info("Issued connect token for external user %s", external_user_id)
        if not data.get("connect_link_url"):
            data = dict(data, connect_link_url=self.connect_link_url(data["token"]))
        return ConnectToken.from_broker(data)

    def connect_link_url(self, token: str) -> str:
        """Hosted connect page for ``token`` on the broker's frontend host."""
        query = urlencode({"token": token, "connectLink": "true"})
        return f"https://{self._settings.pipedream_frontend_host}/_static/connect.html?{query}"

    async def list_accounts(self, external_user_id: str) -> List[Dict[str, Any]]:
        """
        List accounts linked by ``external_user_id``.

        The broker only filters by external user, so callers looking for a
        single account must scan the returned collection.
        """
        headers = await self._headers()
        async with self._client() as client:
            resp = await client.get(
                f"/v1/connect/{self.project_id}/accounts",
                params={"external_user_id": external_user_id},
                headers=headers,
            )
        data = _json_or_raise(resp, "Account listing failed")
        return data.get("data") or []


def _json_or_raise(resp: httpx.Response, message: str) -> Dict[str, Any]:
    try:
        resp.raise_for_status()
    except httpx.HTTPStatusError as exc:
        detail = resp.text[:300]
        logger.warning("%s: HTTP %s — %s", message, resp.status_code, detail)
        raise BrokerError(message, status_code=resp.status_code, detail=detail) from exc

    data = resp.json()
    if isinstance(data, dict) and "error" in data:
        raise BrokerError(
            f"{message}: {data.get('error_description', data['error'])}",
            status_code=resp.status_code,
        )
    return data


_broker: Optional[BrokerClient] = None


def get_broker_client() -> BrokerClient:
    """
    Process-wide broker client.

    Raises ``BrokerNotConfigured`` when credentials are missing, so the
    route layer can answer 500 without crashing at import time.
    """
    global _broker
    if _broker is None:
        _broker = BrokerClient()
    return _broker
