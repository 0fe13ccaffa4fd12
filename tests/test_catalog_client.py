"""
Tests for the token-bound catalog client and its pages.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from config.settings import Settings
from connectors.catalog import CatalogClient
from connectors.errors import SearchUnavailable
from utils.schemas import ConnectToken


def _settings() -> Settings:
    return Settings(pipedream_project_environment="production", _env_file=None)


def _token(value="ctok_1") -> ConnectToken:
    return ConnectToken(
        value=value,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=5),
    )


def _app(slug, auth_type="oauth", weight=1.0):
    return {
        "id": f"app_{slug}",
        "name_slug": slug,
        "name": slug.title(),
        "img_src": f"https://assets.pipedream.net/{slug}.png",
        "auth_type": auth_type,
        "featured_weight": weight,
    }


class CatalogStub:
    """Two pages of three apps each, cursor-paginated."""

    def __init__(self, status=200):
        self.status = status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status)
        after = request.url.params.get("after")
        if after is None:
            data = [_app("slack", weight=9), _app("rss", auth_type=None, weight=8), _app("gmail", weight=7)]
            end = "cur_1"
        else:
            data = [_app("notion", weight=6), _app("jira", weight=5), _app("asana", weight=4)]
            end = "cur_2"
        return httpx.Response(
            200,
            json={
                "page_info": {"total_count": 6, "count": 3, "start_cursor": after, "end_cursor": end},
                "data": data,
            },
        )


class TestCatalogClient:
    @pytest.mark.asyncio
    async def test_list_apps_sends_token_and_sort(self):
        stub = CatalogStub()
        provider = AsyncMock(return_value=_token("ctok_xyz"))
        client = CatalogClient(provider, _settings(), transport=httpx.MockTransport(stub))

        page = await client.list_apps(q="sla", limit=3)

        req = stub.requests[0]
        assert req.url.path == "/v1/apps"
        assert req.url.params["q"] == "sla"
        assert req.url.params["limit"] == "3"
        assert req.url.params["sort_key"] == "featured_weight"
        assert req.url.params["sort_direction"] == "desc"
        assert req.headers["Authorization"] == "Bearer ctok_xyz"
        assert req.headers["X-PD-Environment"] == "production"
        assert [e.slug for e in page.data] == ["slack", "rss", "gmail"]
        assert page.data[1].connectable is False
        assert page.has_next_page() is True

    @pytest.mark.asyncio
    async def test_next_page_uses_cursor_and_asks_for_token_again(self):
        stub = CatalogStub()
        provider = AsyncMock(return_value=_token())
        client = CatalogClient(provider, _settings(), transport=httpx.MockTransport(stub))

        page = await client.list_apps(limit=3)
        await page.get_next_page()

        assert stub.requests[1].url.params["after"] == "cur_1"
        assert "q" not in stub.requests[0].url.params
        assert [e.slug for e in page.data] == ["notion", "jira", "asana"]
        assert page.has_next_page() is False
        assert provider.await_count == 2

    @pytest.mark.asyncio
    async def test_http_error_becomes_search_unavailable(self):
        client = CatalogClient(
            AsyncMock(return_value=_token()),
            _settings(),
            transport=httpx.MockTransport(CatalogStub(status=503)),
        )
        with pytest.raises(SearchUnavailable):
            await client.list_apps(q="x")

    @pytest.mark.asyncio
    async def test_token_failure_becomes_search_unavailable(self):
        from connectors.errors import TokenUnavailable

        client = CatalogClient(
            AsyncMock(side_effect=TokenUnavailable("no token")),
            _settings(),
            transport=httpx.MockTransport(CatalogStub()),
        )
        with pytest.raises(SearchUnavailable):
            await client.list_apps(q="x")


class TestMalformedCatalogPayload:
    @staticmethod
    def _client(payload) -> CatalogClient:
        return CatalogClient(
            AsyncMock(return_value=_token()),
            _settings(),
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=payload)),
        )

    @pytest.mark.asyncio
    async def test_entry_without_slug_becomes_search_unavailable(self):
        client = self._client({"data": [{"name": "no slug", "auth_type": "oauth"}]})
        with pytest.raises(SearchUnavailable):
            await client.list_apps(q="x")

    @pytest.mark.asyncio
    async def test_non_object_body_becomes_search_unavailable(self):
        client = self._client(["not", "an", "object"])
        with pytest.raises(SearchUnavailable):
            await client.list_apps(q="x")

    @pytest.mark.asyncio
    async def test_search_degrades_to_no_results(self):
        from core.catalog_search import CatalogSearchController

        controller = CatalogSearchController(
            self._client({"data": [{"name": "no slug", "auth_type": "oauth"}]}),
            debounce=0,
        )

        assert await controller.search("x", 10) == []
        assert controller.results == []
        assert controller.has_more is False
