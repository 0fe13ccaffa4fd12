"""
AccountResolver — turn an opaque account id into a LinkedAccount.

The listing boundary is keyed by external user, so the resolver fetches
the collection and scans it for the matching id.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Protocol

from connectors.errors import AccountResolutionFailed
from utils.schemas import LinkedAccount

logger = logging.getLogger(__name__)


class AccountLister(Protocol):
    async def list_accounts(self, external_user_id: str) -> List[Dict[str, Any]]: ...


class AccountResolver:
    def __init__(self, lister: AccountLister, external_user_id: str):
        self._lister = lister
        self._external_user_id = external_user_id

    async def resolve(self, account_id: str, source_slug: str = "") -> LinkedAccount:
        """
        Return the listed account whose id matches ``account_id``.

        Falls back to ``LinkedAccount(id=account_id, display_name=account_id)``
        when the listing does not contain it.  Raises
        ``AccountResolutionFailed`` when the listing itself fails.
        """
        try:
            accounts = await self._lister.list_accounts(self._external_user_id)
        except Exception as exc:
            logger.warning("Account listing failed for %s: %s", account_id, exc)
            raise AccountResolutionFailed("Failed to fetch account details") from exc

        for account in accounts or []:
            if account.get("id") == account_id:
                return LinkedAccount(
                    id=account_id,
                    display_name=account.get("name") or account_id,
                    source_slug=source_slug,
                )

        logger.info("Account %s not in listing, using id as display name", account_id)
        return LinkedAccount(id=account_id, display_name=account_id, source_slug=source_slug)
