"""
Navigation Side-Channel.

The session core never renders anything.  The only effects it pushes
out to the UI layer are: reset the navigation stack to the login
screen, enter the authenticated area for a role, and show a one-off
notice.  The UI supplies a ``Navigator`` implementation; the
``LoggingNavigator`` here is used headless and in tests.
"""

from __future__ import annotations

from typing import Optional, Protocol

from pydantic import BaseModel

from app.logger import StructuredLogger
from app.models.enums import LandingScreen, UserRole


class Notice(BaseModel):
    """A user-visible, dismiss-only message."""

    title: str
    message: str


SESSION_EXPIRED_NOTICE = Notice(
    title="Session expired",
    message="Please log in again.",
)

LOCKOUT_NOTICE = Notice(
    title="Security Lockout",
    message=(
        "Too many failed authentication attempts. All stored credentials "
        "have been cleared for security. Please log in again with your "
        "username and password."
    ),
)

BIOMETRIC_TEMPORARILY_DISABLED_NOTICE = Notice(
    title="Authentication Temporarily Disabled",
    message="Please try again later or log in with your username and password.",
)


class Navigator(Protocol):
    """What the UI layer must implement for the session core."""

    def reset_to_login(self, notice: Optional[Notice] = None) -> None: ...

    def enter_authenticated(self, role: UserRole) -> None: ...

    def show_notice(self, notice: Notice) -> None: ...


class LoggingNavigator:
    """Headless ``Navigator`` that records effects in the structured log.

    Attributes
    ----------
    landing:
        The last screen navigated to, or ``None`` before any navigation.
    notices:
        Every notice shown, oldest first.
    """

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger
        self.landing: Optional[LandingScreen] = None
        self.role: Optional[UserRole] = None
        self.notices: list[Notice] = []

    def reset_to_login(self, notice: Optional[Notice] = None) -> None:
        if notice is not None:
            self.show_notice(notice)
        self.landing = LandingScreen.LOGIN
        self.role = None
        self._logger.info("Navigation reset to login.")

    def enter_authenticated(self, role: UserRole) -> None:
        self.landing = (
            LandingScreen.PATIENT_HOME if role == UserRole.PATIENT else LandingScreen.NURSE_HOME
        )
        self.role = role
        self._logger.info("Entered authenticated area.", extra={"role": str(role)})

    def show_notice(self, notice: Notice) -> None:
        self.notices.append(notice)
        self._logger.info("Notice: %s: %s", notice.title, notice.message)
