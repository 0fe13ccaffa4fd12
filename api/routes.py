"""
Broker boundary routes — connect-token issuance and account listing.

Route prefix: /api/v1/connect
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from api.dependencies import get_broker
from connectors.broker import BrokerClient
from utils.schemas import TokenRequest, TokenResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connect"])


@router.post("/token", response_model=TokenResponse)
async def create_token(
    request: TokenRequest,
    broker: BrokerClient = Depends(get_broker),
) -> TokenResponse:
    """Issue a fresh connect token for an external user."""
    if not request.external_user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="External user ID is required",
        )

    try:
        token = await broker.create_token(request.external_user_id)
    except Exception as exc:
        logger.error("Error creating connect token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create token",
        )

    return TokenResponse(
        token=token.value,
        connect_link_url=token.connect_link_url,
        expires_at=token.expires_at,
    )


@router.get("/accounts/{account_id}")
async def get_account(
    account_id: str,
    external_user_id: Optional[str] = Query(None),
    broker: BrokerClient = Depends(get_broker),
) -> Dict[str, Any]:
    """
    Account listing for the resolver.

    The broker only filters by external user; without ``external_user_id``
    the account id is used as the filter value, so callers should pass it.
    """
    try:
        accounts = await broker.list_accounts(external_user_id or account_id)
    except Exception as exc:
        logger.error("Error fetching account %s: %s", account_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch account",
        )
    return {"data": accounts}
