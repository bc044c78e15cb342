"""
Session State.

Provides an injectable ``SessionManager`` holding the role of the
current session.  It replaces an ambient "current user type" global:
one instance is created by the composition root and passed to every
service that needs it, and the role only changes through the
transition methods below.

Usage::

    from app.auth import SessionManager
    from app.models.enums import UserRole

    session = SessionManager(logger)
    await session.initialize(token_store)
    session.begin_session(UserRole.PATIENT)
    session.current_role  # UserRole.PATIENT
"""

from __future__ import annotations

import asyncio
import threading
from functools import wraps
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, ParamSpec, TypeVar

from app.errors import AuthRequiredError
from app.logger import StructuredLogger
from app.models.enums import UserRole

if TYPE_CHECKING:
    from app.services.token_store import TokenStore

P = ParamSpec("P")
R = TypeVar("R")


class SessionManager:
    """Injectable holder for the current session role.

    ``current_role`` is ``None`` when nobody is signed in.
    """

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger
        self._lock: threading.RLock = threading.RLock()
        self._current_role: Optional[UserRole] = None
        self._ready: asyncio.Event = asyncio.Event()

    # ------------------------------------------------------------------
    # Start-up scan
    # ------------------------------------------------------------------

    async def initialize(self, token_store: "TokenStore") -> Optional[UserRole]:
        """Set the initial role from whichever credential pair is stored.

        Runs once; later calls return the current role without
        re-scanning.
        """
        if self._ready.is_set():
            return self.current_role

        role = await token_store.detect_role()
        with self._lock:
            self._current_role = role
        self._ready.set()
        self._logger.info(
            "Session state initialised.", extra={"role": str(role) if role else "none"},
        )
        return role

    async def wait_until_ready(self) -> None:
        """Block until :meth:`initialize` has completed."""
        await self._ready.wait()

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def begin_session(self, role: UserRole) -> None:
        """Record *role* as signed in (login or resumed session)."""
        with self._lock:
            self._current_role = UserRole(role)
        self._logger.info("Session started.", extra={"role": str(role)})

    def switch_role(self, role: UserRole) -> None:
        """Change the active role of an existing session.

        Raises:
            AuthRequiredError: If no session is active.
        """
        with self._lock:
            if self._current_role is None:
                raise AuthRequiredError("Cannot switch role without an active session.")
            previous = self._current_role
            self._current_role = UserRole(role)
        self._logger.info(
            "Session role switched.", extra={"from_role": str(previous), "to_role": str(role)},
        )

    def end_session(self) -> None:
        """Clear the current role.  Safe to call when already signed out."""
        with self._lock:
            previous = self._current_role
            self._current_role = None
        if previous is not None:
            self._logger.info("Session ended.", extra={"role": str(previous)})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def current_role(self) -> Optional[UserRole]:
        with self._lock:
            return self._current_role

    @property
    def is_authenticated(self) -> bool:
        """``True`` when a role is currently signed in."""
        with self._lock:
            return self._current_role is not None


def require_session(
    session: SessionManager,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Return a decorator that refuses to run *func* without a session.

    Args:
        session: The shared ``SessionManager``.

    Returns:
        A decorator for async service callables that raises
        :class:`~app.errors.AuthRequiredError` when nobody is signed in.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            if not session.is_authenticated:
                raise AuthRequiredError(
                    "Authentication required. Please log in before "
                    "performing this action."
                )
            return await func(*args, **kwargs)

        return wrapper

    return decorator
