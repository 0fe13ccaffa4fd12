"""
Pydantic schemas for the Connect Portal.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ═══════════════════════════════════════════════════════════════════════════════
# Connect tokens
# ═══════════════════════════════════════════════════════════════════════════════


class ConnectToken(BaseModel):
    """
    Short-lived broker credential for one external user.

    Frozen: a refresh or a rotation replaces the whole token.
    """

    model_config = ConfigDict(frozen=True)

    value: str
    expires_at: datetime
    connect_link_url: str = ""

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at > now

    @classmethod
    def from_broker(cls, data: Dict[str, Any]) -> "ConnectToken":
        """Build from a broker (or ``/token`` route) payload."""
        return cls(
            value=data["token"],
            expires_at=data["expires_at"],
            connect_link_url=data.get("connect_link_url") or "",
        )


class TokenRequest(BaseModel):
    external_user_id: Optional[str] = None


class TokenResponse(BaseModel):
    token: str
    connect_link_url: str
    expires_at: datetime


# ═══════════════════════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════════════════════


class CatalogEntry(BaseModel):
    """One app listed in the broker's catalog."""

    model_config = ConfigDict(frozen=True)

    slug: str
    display_name: str
    icon_url: str = ""
    auth_type: Optional[str] = None
    featured_weight: float = 0.0

    @property
    def connectable(self) -> bool:
        return self.auth_type is not None

    @classmethod
    def from_broker(cls, data: Dict[str, Any]) -> "CatalogEntry":
        return cls(
            slug=data["name_slug"],
            display_name=data.get("name") or data["name_slug"],
            icon_url=data.get("img_src") or "",
            auth_type=data.get("auth_type"),
            featured_weight=data.get("featured_weight") or 0.0,
        )


class SearchSession(BaseModel):
    """Accumulated state of one live catalog query."""

    query: str = ""
    cursor: Optional[str] = None
    accumulated_results: List[CatalogEntry] = Field(default_factory=list)
    has_more: bool = True

    def seen_slugs(self) -> set[str]:
        return {e.slug for e in self.accumulated_results}


# ═══════════════════════════════════════════════════════════════════════════════
# Connect attempts & accounts
# ═══════════════════════════════════════════════════════════════════════════════


class AttemptStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ConnectState(str, Enum):
    """States of the connect flow controller."""

    IDLE = "idle"
    AWAITING_TOKEN = "awaiting_token"
    HANDSHAKING = "handshaking"
    RESOLVING_ACCOUNT = "resolving_account"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


BUSY_STATES = frozenset(
    {ConnectState.AWAITING_TOKEN, ConnectState.HANDSHAKING, ConnectState.RESOLVING_ACCOUNT}
)


class ConnectAttempt(BaseModel):
    target_slug: str
    status: AttemptStatus = AttemptStatus.IDLE
    error: Optional[str] = None


class LinkedAccount(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    source_slug: str = ""


# ═══════════════════════════════════════════════════════════════════════════════
# Widget handshake outcomes
# ═══════════════════════════════════════════════════════════════════════════════


class HandshakeSucceeded(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: str


class HandshakeFailed(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class HandshakeClosed(BaseModel):
    """User closed the widget without completing the connection."""

    model_config = ConfigDict(frozen=True)


HandshakeResult = Union[HandshakeSucceeded, HandshakeFailed, HandshakeClosed]


# ═══════════════════════════════════════════════════════════════════════════════
# Session API payloads
# ═══════════════════════════════════════════════════════════════════════════════


class SessionCreateRequest(BaseModel):
    external_user_id: str = Field(..., min_length=1)


class QueryRequest(BaseModel):
    text: str = ""


class SelectRequest(BaseModel):
    slug: str


class SessionEvent(BaseModel):
    """Notification delivered to the hosting page."""

    kind: str  # "account_connected" | "error"
    message: Optional[str] = None
    account_id: Optional[str] = None
    account_name: Optional[str] = None
    app_slug: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SearchResults(BaseModel):
    query: str
    results: List[CatalogEntry] = Field(default_factory=list)
    has_more: bool = False
    visible: bool = False


class SessionSnapshot(BaseModel):
    session_id: str
    external_user_id: str
    ready: bool
    token_valid: bool
    error: Optional[str] = None
    selected: Optional[CatalogEntry] = None
    state: ConnectState = ConnectState.IDLE
    attempt: Optional[ConnectAttempt] = None
    account: Optional[LinkedAccount] = None
    connect_url: Optional[str] = None
    handshake_id: Optional[str] = None
    events: List[SessionEvent] = Field(default_factory=list)


class CallbackStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    CLOSED = "closed"
