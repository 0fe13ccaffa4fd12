"""
CatalogClient — paginated app catalog listing bound to a connect token.

The client never stores a token itself; it asks its ``token_provider``
(normally ``TokenCache.ensure_fresh_token``) before every request so an
expired token is refreshed first.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from config.settings import Settings, config
from connectors.errors import SearchUnavailable
from utils.schemas import CatalogEntry, ConnectToken

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[ConnectToken]]

SORT_KEY = "featured_weight"
SORT_DIRECTION = "desc"


class AppsPage:
    """
    One page of catalog results plus the cursor to the next one.

    ``get_next_page`` advances this object in place, mirroring the cursor
    semantics of the broker's SDK pages.
    """

    def __init__(
        self,
        client: "CatalogClient",
        params: Dict[str, Any],
        data: List[CatalogEntry],
        page_info: Dict[str, Any],
    ):
        self._client = client
        self._params = params
        self.data = data
        self.page_info = page_info
        self._fetched = len(data)

    @property
    def cursor(self) -> Optional[str]:
        return self.page_info.get("end_cursor")

    def has_next_page(self) -> bool:
        if not self.cursor:
            return False
        total = self.page_info.get("total_count")
        if total is not None:
            return self._fetched < total
        return len(self.data) >= self._params.get("limit", 0)

    async def get_next_page(self) -> "AppsPage":
        if not self.has_next_page():
            self.data = []
            return self
        params = dict(self._params, after=self.cursor)
        data, page_info = await self._client._fetch(params)
        self.data = data
        self.page_info = page_info
        self._fetched += len(data)
        return self


class CatalogClient:
    def __init__(
        self,
        token_provider: TokenProvider,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._token_provider = token_provider
        self._settings = settings or config
        self._transport = transport

    async def list_apps(
        self,
        *,
        q: Optional[str] = None,
        limit: int = 20,
        sort_key: str = SORT_KEY,
        sort_direction: str = SORT_DIRECTION,
    ) -> AppsPage:
        params: Dict[str, Any] = {
            "limit": limit,
            "sort_key": sort_key,
            "sort_direction": sort_direction,
        }
        if q:
            params["q"] = q
        data, page_info = await self._fetch(params)
        return AppsPage(self, params, data, page_info)

    async def _fetch(self, params: Dict[str, Any]) -> tuple[List[CatalogEntry], Dict[str, Any]]:
        try:
            token = await self._token_provider()
            async with httpx.AsyncClient(
                base_url=self._settings.broker_api_base,
                transport=self._transport,
            ) as client:
                resp = await client.get(
                    "/v1/apps",
                    params=params,
                    headers={
                        "Authorization": f"Bearer {token.value}",
                        "X-PD-Environment": self._settings.pipedream_project_environment,
                    },
                )
                resp.raise_for_status()
                body = resp.json()
            entries = [CatalogEntry.from_broker(item) for item in body.get("data") or []]
            page_info = body.get("page_info") or {}
        except SearchUnavailable:
            raise
        except Exception as exc:
            logger.warning("Catalog fetch failed (%s): %s", params.get("q"), exc)
            raise SearchUnavailable(str(exc)) from exc

        return entries, page_info
