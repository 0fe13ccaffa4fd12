"""
Error taxonomy for the connect flow.

Controllers catch these at their boundary and turn them into state
transitions plus a human-readable message; route handlers turn them into
``HTTPException``.
"""

from __future__ import annotations

from typing import Optional


class ConnectError(Exception):
    """Base class for every connect-portal error."""


class BrokerNotConfigured(ConnectError):
    """Project id / client id / client secret missing."""


class BrokerError(ConnectError):
    """The broker answered with a non-2xx status or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class TokenUnavailable(ConnectError):
    """No valid connect token could be produced (broker down or misconfigured)."""


class HandshakeError(ConnectError):
    """The authorization widget reported a failure."""


class HandshakeCancelled(ConnectError):
    """The user closed the widget. Not shown as an error."""


class AccountResolutionFailed(ConnectError):
    """The account listing could not be fetched."""


class SearchUnavailable(ConnectError):
    """The catalog could not be queried."""


class ConnectInProgress(ConnectError):
    """A connect attempt is already pending."""
