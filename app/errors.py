"""
Session Core Exceptions.

Authentication-fatal conditions are raised as exceptions so callers
cannot mistake them for data.  By the time ``AuthRequiredError`` or
``SessionExpiredError`` reaches a caller, the forced logout (token wipe,
role reset, navigation reset) has already happened.
"""

from __future__ import annotations

from typing import Any, Optional


class SessionCoreError(RuntimeError):
    """Base class for every error raised by the session core."""


class AuthRequiredError(SessionCoreError):
    """Raised when a request is attempted without a complete credential pair."""

    def __init__(self, message: str = "No authentication tokens found.") -> None:
        super().__init__(message)


class SessionExpiredError(SessionCoreError):
    """Raised when the access token could not be refreshed."""

    def __init__(self, message: str = "Session expired.") -> None:
        super().__init__(message)


class RequestFailure(SessionCoreError):
    """A non-OK business response surfaced by ``get_json``.

    Attributes
    ----------
    status:
        HTTP status code of the final response.
    body:
        Parsed JSON body, or ``None`` when the body was not JSON.
    """

    def __init__(self, status: int, body: Any = None) -> None:
        self.status: int = status
        self.body: Any = body
        detail: Optional[str] = None
        if isinstance(body, dict):
            raw = body.get("detail")
            detail = str(raw) if raw else None
        super().__init__(detail or "Request failed")


class TokenRefreshError(SessionCoreError):
    """The refresh endpoint did not yield a usable access token.

    ``status`` is ``None`` for network errors and timeouts.  Malformed
    payloads carry the (2xx) status of the response.
    """

    def __init__(self, reason: str, status: Optional[int] = None) -> None:
        self.reason: str = reason
        self.status: Optional[int] = status
        super().__init__(f"Token refresh failed: {reason}")


class SecureStoreError(SessionCoreError):
    """The secure store could not derive its key or reach its backing file."""
