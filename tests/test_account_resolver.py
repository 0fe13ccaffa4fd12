"""
Tests for the account resolver.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from connectors.errors import AccountResolutionFailed, BrokerError
from core.account_resolver import AccountResolver


def _lister(**kwargs) -> MagicMock:
    lister = MagicMock()
    lister.list_accounts = AsyncMock(**kwargs)
    return lister


class TestAccountResolver:
    @pytest.mark.asyncio
    async def test_finds_matching_account(self):
        lister = _lister(return_value=[
            {"id": "apn_1", "name": "Personal Gmail"},
            {"id": "apn_2", "name": "Work Slack"},
        ])
        resolver = AccountResolver(lister, "u1")

        account = await resolver.resolve("apn_2", "slack")

        assert account.id == "apn_2"
        assert account.display_name == "Work Slack"
        assert account.source_slug == "slack"
        lister.list_accounts.assert_awaited_once_with("u1")

    @pytest.mark.asyncio
    async def test_missing_account_falls_back_to_id(self):
        resolver = AccountResolver(_lister(return_value=[{"id": "apn_1", "name": "x"}]), "u1")
        account = await resolver.resolve("apn_9")
        assert account.id == "apn_9"
        assert account.display_name == "apn_9"

    @pytest.mark.asyncio
    async def test_nameless_match_uses_id(self):
        resolver = AccountResolver(_lister(return_value=[{"id": "apn_1", "name": None}]), "u1")
        account = await resolver.resolve("apn_1")
        assert account.display_name == "apn_1"

    @pytest.mark.asyncio
    async def test_listing_failure_raises(self):
        resolver = AccountResolver(_lister(side_effect=BrokerError("boom", status_code=500)), "u1")
        with pytest.raises(AccountResolutionFailed, match="Failed to fetch account details"):
            await resolver.resolve("apn_1")
