"""
Dashboard session routes — drive one connect component per session.

Route prefix: /api/v1/connect
"""

from __future__ import annotations

import html
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import HTMLResponse

from api.dependencies import get_session_store
from connectors.errors import BrokerNotConfigured, ConnectInProgress
from core.connect_session import ConnectSession, SessionStore
from utils.schemas import (
    CallbackStatus,
    HandshakeClosed,
    HandshakeFailed,
    HandshakeResult,
    HandshakeSucceeded,
    QueryRequest,
    SearchResults,
    SelectRequest,
    SessionCreateRequest,
    SessionSnapshot,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sessions"])


def _get_session(session_id: str, store: SessionStore) -> ConnectSession:
    try:
        return store.get(session_id)
    except KeyError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"Session '{session_id}' not found")


def _ready_session(session_id: str, store: SessionStore) -> ConnectSession:
    session = _get_session(session_id, store)
    if not session.ready:
        raise HTTPException(
            status.HTTP_409_CONFLICT,
            session.error or "Session not initialised",
        )
    return session


def _results(session: ConnectSession) -> SearchResults:
    search = session.search
    return SearchResults(
        query=search.live_query or "",
        results=search.results,
        has_more=search.has_more,
        visible=search.visible,
    )


# ── Routes ─────────────────────────────────────────────────────────────


@router.post("/sessions", response_model=SessionSnapshot)
async def create_session(
    request: SessionCreateRequest,
    store: SessionStore = Depends(get_session_store),
) -> SessionSnapshot:
    """Create a session and prime its connect token."""
    try:
        session = await store.create(request.external_user_id)
    except BrokerNotConfigured as exc:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    return session.snapshot()


@router.get("/sessions/{session_id}", response_model=SessionSnapshot)
async def get_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> SessionSnapshot:
    return _get_session(session_id, store).snapshot()


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> Dict[str, Any]:
    if not await store.remove(session_id):
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"Session '{session_id}' not found")
    return {"status": "closed", "session_id": session_id}


@router.post("/sessions/{session_id}/query", response_model=SearchResults)
async def change_query(
    session_id: str,
    request: QueryRequest,
    store: SessionStore = Depends(get_session_store),
) -> SearchResults:
    """Feed a keystroke to the search box and wait for the debounced search."""
    session = _ready_session(session_id, store)
    session.search.on_query_changed(request.text)
    await session.search.settle()
    return _results(session)


@router.post("/sessions/{session_id}/browse", response_model=SearchResults)
async def browse_catalog(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> SearchResults:
    """Unfiltered listing shown when the empty search box gets focus."""
    session = _ready_session(session_id, store)
    if not session.search.results:
        await session.search.search(None, session.search.page_size)
    session.search.visible = True
    return _results(session)


@router.post("/sessions/{session_id}/more", response_model=SearchResults)
async def load_more(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> SearchResults:
    session = _ready_session(session_id, store)
    await session.search.load_more()
    return _results(session)


@router.post("/sessions/{session_id}/select", response_model=SessionSnapshot)
async def select_app(
    session_id: str,
    request: SelectRequest,
    store: SessionStore = Depends(get_session_store),
) -> SessionSnapshot:
    session = _ready_session(session_id, store)
    try:
        session.select(request.slug)
    except KeyError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"App '{request.slug}' is not in the current results")
    return session.snapshot()


@router.post("/sessions/{session_id}/connect", response_model=SessionSnapshot)
async def connect_app(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> SessionSnapshot:
    """Start connecting the selected app; returns the widget link once it is open."""
    session = _ready_session(session_id, store)
    try:
        return await session.connect()
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))
    except ConnectInProgress as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, str(exc))


@router.post("/sessions/{session_id}/reset", response_model=SessionSnapshot)
async def reset_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> SessionSnapshot:
    session = _get_session(session_id, store)
    try:
        session.reset()
    except ConnectInProgress as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, str(exc))
    return session.snapshot()


@router.get("/callback")
async def handshake_callback(
    handshake_id: str = Query(...),
    status_: CallbackStatus = Query(..., alias="status"),
    account_id: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    store: SessionStore = Depends(get_session_store),
) -> HTMLResponse:
    """
    Widget redirect target.  Delivers the handshake outcome to the waiting
    session and returns a small page that notifies the opener and closes.
    """
    result: HandshakeResult
    if status_ is CallbackStatus.SUCCESS:
        if not account_id:
            raise HTTPException(status.HTTP_400_BAD_REQUEST, "account_id is required on success")
        result = HandshakeSucceeded(account_id=account_id)
        message = "Account connected"
    elif status_ is CallbackStatus.ERROR:
        message = error or "Connection failed"
        result = HandshakeFailed(message=message)
    else:
        result = HandshakeClosed()
        message = "Connection cancelled"

    if not store.complete_handshake(handshake_id, result):
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"Handshake '{handshake_id}' not pending")

    logger.info("Handshake %s completed: %s", handshake_id, status_.value)
    return HTMLResponse(
        content=_callback_html(status_ is CallbackStatus.SUCCESS, message, handshake_id),
        status_code=200,
    )


# ── Callback HTML template ─────────────────────────────────────────────


def _callback_html(success: bool, message: str, handshake_id: str) -> str:
    """
    Small HTML page shown in the connect popup after redirect.
    Sends a postMessage to the opener and auto-closes.
    """
    status_text = "Connected!" if success else "Not connected"
    color = "#00d992" if success else "#ef4444"
    payload = json.dumps(
        {
            "type": "connect-callback",
            "handshake_id": handshake_id,
            "success": success,
            "message": message,
        }
    ).replace("</", "<\\/")

    return f"""<!DOCTYPE html>
<html>
<head>
    <title>Connect — {status_text}</title>
    <style>
        body {{
            font-family: system-ui, sans-serif;
            display: flex; align-items: center; justify-content: center;
            height: 100vh; margin: 0;
        }}
        .card {{ text-align: center; padding: 40px; max-width: 400px; }}
        h2 {{ color: {color}; margin: 16px 0 8px; }}
        .close-note {{ color: #636a80; font-size: 0.7rem; margin-top: 20px; }}
    </style>
</head>
<body>
    <div class="card">
        <h2>{status_text}</h2>
        <p>{html.escape(message)}</p>
        <p class="close-note">This window will close automatically…</p>
    </div>
    <script>
        if (window.opener) {{
            window.opener.postMessage({payload}, '*');
        }}
        setTimeout(() => window.close(), 2000);
    </script>
</body>
</html>"""
