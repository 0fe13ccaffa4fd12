"""
FastAPI dependencies (shared across routes).
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, status

from config.settings import config
from connectors.broker import BrokerClient, get_broker_client
from connectors.errors import BrokerNotConfigured
from core.connect_session import ConnectSession, SessionStore

_store: Optional[SessionStore] = None


def get_broker() -> BrokerClient:
    """Return the configured broker client or answer 500."""
    try:
        return get_broker_client()
    except BrokerNotConfigured as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        )


def _broker_session(session_id: str, external_user_id: str) -> ConnectSession:
    broker = get_broker_client()
    return ConnectSession(session_id, external_user_id, issuer=broker, lister=broker)


def get_session_store() -> SessionStore:
    """Process-wide store of dashboard sessions."""
    global _store
    if _store is None:
        _store = SessionStore(_broker_session, idle_ttl=config.session_idle_ttl_seconds)
    return _store
