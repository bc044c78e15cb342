"""
Account Service.

Single orchestrator for the account flows the UI layer triggers by
hand: login, logout, password reset, password change and account
deletion.  Screens stay thin form handlers; every method here returns a
typed ``AuthResult`` or ``ValidationResult`` and the UI never inspects
raw exceptions or HTTP responses.

Login and password reset are anonymous calls on the raw HTTP client.
Everything else goes through :class:`AuthenticatedClient`, so a dead
session surfaces as ``SESSION_EXPIRED`` after the forced logout has
already happened.
"""

from __future__ import annotations

import re
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from app.auth import SessionManager
from app.config import AppConfig
from app.errors import AuthRequiredError, SessionExpiredError
from app.logger import StructuredLogger
from app.models.auth_models import AuthErrorCode, AuthResult, TokenPair, ValidationResult
from app.models.enums import UserRole
from app.services.biometric_gatekeeper import BiometricGatekeeper, ConsentCallback
from app.services.http_client import AuthenticatedClient
from app.services.navigation import Navigator
from app.services.token_store import TokenStore
from app.utils.audit import AuditAction, log_audit_event


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_EMAIL_RE: re.Pattern[str] = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_NETWORK_MESSAGE: str = (
    "Unable to contact server. Please check your connection and try again."
)
_SESSION_EXPIRED_MESSAGE: str = "Your session has expired. Please log in again."


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class AuthService:
    """Centralised account service.

    Parameters
    ----------
    http:
        Shared raw ``httpx.AsyncClient`` for anonymous endpoints.
    client:
        Authenticated request client for bearer-auth endpoints.
    tokens:
        Role-namespaced token store.
    session:
        The shared session holder.
    gatekeeper:
        Biometric gatekeeper; offered after patient login and disabled
        on account deletion.
    navigator:
        UI side-channel.
    config:
        Application configuration (endpoint paths).
    logger:
        Structured JSON logger for audit-grade logging.
    consent:
        Optional callback asking the patient whether to enable
        biometrics.  Without it the set-up offer is skipped.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        client: AuthenticatedClient,
        tokens: TokenStore,
        session: SessionManager,
        gatekeeper: BiometricGatekeeper,
        navigator: Navigator,
        config: AppConfig,
        logger: StructuredLogger,
        consent: Optional[ConsentCallback] = None,
    ) -> None:
        self._http: httpx.AsyncClient = http
        self._client: AuthenticatedClient = client
        self._tokens: TokenStore = tokens
        self._session: SessionManager = session
        self._gatekeeper: BiometricGatekeeper = gatekeeper
        self._navigator: Navigator = navigator
        self._config: AppConfig = config
        self._logger: StructuredLogger = logger
        self._consent: Optional[ConsentCallback] = consent

    # ==================================================================
    # Validation helpers
    # ==================================================================

    @staticmethod
    def normalize_email(email: str) -> str:
        """Trim and lowercase *email*."""
        return email.strip().lower()

    @staticmethod
    def validate_email(email: str) -> ValidationResult:
        """Check that *email* looks like ``local@domain.tld`` once normalised."""
        cleaned = AuthService.normalize_email(email or "")
        if not cleaned or not _EMAIL_RE.match(cleaned):
            return ValidationResult(
                is_valid=False,
                error_message="Please enter a valid email address.",
            )
        return ValidationResult(is_valid=True)

    # ==================================================================
    # Login
    # ==================================================================

    async def login(self, role: UserRole, username: str, password: str) -> AuthResult:
        """Authenticate against the role's login endpoint.

        On success the credential pair is stored, the session begins and
        the UI enters the role's area.  Patients are then offered
        biometric set-up once, if a consent callback is configured.

        Returns
        -------
        AuthResult
            ``success=True`` with ``role`` set, or ``VALIDATION_ERROR``,
            ``INVALID_CREDENTIALS``, ``NETWORK_ERROR`` or
            ``UNKNOWN_ERROR``.
        """
        role = UserRole(role)
        username = (username or "").strip()
        if not username or not password:
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.VALIDATION_ERROR,
                error_message="Please enter both username and password.",
            )

        path = (
            self._config.PATIENT_LOGIN_PATH
            if role == UserRole.PATIENT
            else self._config.NURSE_LOGIN_PATH
        )

        try:
            response = await self._http.post(
                path,
                json={"username": username, "password": password},
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            self._logger.warning("Login request failed: %s", exc, extra={"role": str(role)})
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.NETWORK_ERROR,
                error_message=_NETWORK_MESSAGE,
            )

        if response.status_code != 200:
            self._logger.info(
                "Login rejected with status %d.",
                response.status_code,
                extra={"role": str(role)},
            )
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.INVALID_CREDENTIALS,
                error_message="Please check your credentials and try again.",
            )

        try:
            pair = TokenPair.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            self._logger.error("Login response is malformed: %s", exc)
            pair = None
        if pair is None or not pair.refresh:
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.UNKNOWN_ERROR,
                error_message="Unexpected response from server. Please try again.",
            )

        await self._tokens.save_credentials(role, pair.access, pair.refresh)
        self._session.begin_session(role)
        log_audit_event(self._logger, AuditAction.LOGIN, role)
        self._navigator.enter_authenticated(role)

        if role == UserRole.PATIENT and self._consent is not None:
            await self._gatekeeper.prompt_for_setup(role, self._consent)

        return AuthResult(success=True, role=role)

    # ==================================================================
    # Logout
    # ==================================================================

    async def logout(self) -> AuthResult:
        """Revoke the refresh token server-side, then clear local state.

        The server call is best-effort; local cleanup always runs.
        """
        role = self._session.current_role
        try:
            if role is not None:
                refresh = await self._tokens.get_refresh_token(role)
                if refresh:
                    response = await self._client.request(
                        self._config.LOGOUT_PATH, "POST", json={"refresh": refresh},
                    )
                    if not response.is_success:
                        self._logger.warning(
                            "Server-side logout returned %d.", response.status_code,
                        )
        except (AuthRequiredError, SessionExpiredError) as exc:
            self._logger.info("Session already ended during logout: %s", exc)
        except httpx.HTTPError as exc:
            self._logger.warning("Server-side logout failed: %s", exc)
        finally:
            if role is not None:
                await self._tokens.clear_role(role)
            self._session.end_session()
            self._navigator.reset_to_login()

        log_audit_event(self._logger, AuditAction.LOGOUT, role)
        return AuthResult(success=True, role=role)

    # ==================================================================
    # Password reset
    # ==================================================================

    async def request_password_reset(self, email: str) -> AuthResult:
        """Ask the backend to email a reset link.

        The success message is the same whether or not the address is
        registered.
        """
        email_check = self.validate_email(email)
        if not email_check.is_valid:
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.VALIDATION_ERROR,
                error_message=email_check.error_message,
            )

        email = self.normalize_email(email)
        try:
            response = await self._http.post(
                self._config.PASSWORD_RESET_PATH,
                json={"email": email},
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            self._logger.warning("Password reset request failed: %s", exc)
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.NETWORK_ERROR,
                error_message=_NETWORK_MESSAGE,
            )

        if response.status_code == 200:
            self._logger.info("Password reset requested.")
            return AuthResult(
                success=True,
                error_message=(
                    f"If that account exists, a password reset link has been sent to {email}"
                ),
            )
        if response.status_code == 429:
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.RATE_LIMITED,
                error_message="Too many requests. Please try again in about an hour.",
            )

        self._logger.warning("Password reset returned %d.", response.status_code)
        return AuthResult(
            success=False,
            error_code=AuthErrorCode.UNKNOWN_ERROR,
            error_message="Failed to send recovery email. Please try again later.",
        )

    # ==================================================================
    # Signed-in account operations
    # ==================================================================

    async def change_password(
        self,
        old_password: str,
        new_password: str,
        confirm_password: str,
    ) -> AuthResult:
        """Change the signed-in user's password.

        On success ``error_message`` carries the server's confirmation
        text, if any.
        """
        missing = [
            label
            for label, value in (
                ("old password", old_password),
                ("new password", new_password),
                ("confirm new password", confirm_password),
            )
            if not value
        ]
        if missing:
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.VALIDATION_ERROR,
                error_message=f"Please enter: {', '.join(missing)}",
            )
        if new_password != confirm_password:
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.VALIDATION_ERROR,
                error_message="New password and confirm password do not match",
            )

        role = self._session.current_role
        try:
            response = await self._client.request(
                self._config.CHANGE_PASSWORD_PATH,
                "POST",
                json={"old_password": old_password, "new_password": new_password},
            )
        except (AuthRequiredError, SessionExpiredError):
            return self._session_expired()
        except httpx.HTTPError as exc:
            self._logger.warning("Change password request failed: %s", exc)
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.NETWORK_ERROR,
                error_message=_NETWORK_MESSAGE,
            )

        body = _json_or_none(response)
        if not response.is_success:
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.UNKNOWN_ERROR,
                error_message=_change_password_error(body),
                role=role,
            )

        self._logger.info("Password changed.", extra={"role": str(role)})
        message = body.get("message") if isinstance(body, dict) else None
        return AuthResult(success=True, error_message=message, role=role)

    async def delete_account(self, password: str) -> AuthResult:
        """Delete the signed-in account after password confirmation.

        On success every stored credential and biometric record is
        removed and navigation resets to login.
        """
        password = (password or "").strip()
        if not password:
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.VALIDATION_ERROR,
                error_message="Please enter your password to confirm deletion.",
            )

        role = self._session.current_role
        try:
            response = await self._client.request(
                self._config.DELETE_ACCOUNT_PATH, "POST", json={"password": password},
            )
        except (AuthRequiredError, SessionExpiredError):
            return self._session_expired()
        except httpx.HTTPError as exc:
            self._logger.warning("Delete account request failed: %s", exc)
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.NETWORK_ERROR,
                error_message=(
                    "A network error occurred. Please check your connection and try again."
                ),
            )

        if response.status_code in (200, 204):
            await self._tokens.clear_all()
            if role == UserRole.PATIENT:
                await self._gatekeeper.disable()
            self._session.end_session()
            log_audit_event(self._logger, AuditAction.ACCOUNT_DELETED, role)
            self._navigator.reset_to_login()
            return AuthResult(success=True, role=role)

        if response.status_code == 403:
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.INVALID_CREDENTIALS,
                error_message="Incorrect password. Please try again.",
                role=role,
            )

        body = _json_or_none(response)
        detail = body.get("detail") if isinstance(body, dict) else None
        return AuthResult(
            success=False,
            error_code=AuthErrorCode.UNKNOWN_ERROR,
            error_message=str(detail) if detail else (
                "Failed to delete account. Please try again later."
            ),
            role=role,
        )

    # ==================================================================
    # Internals
    # ==================================================================

    @staticmethod
    def _session_expired() -> AuthResult:
        return AuthResult(
            success=False,
            error_code=AuthErrorCode.SESSION_EXPIRED,
            error_message=_SESSION_EXPIRED_MESSAGE,
        )


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def _change_password_error(body: Any) -> str:
    """Pick the server's ``error`` / ``errors`` text, else a generic one."""
    if isinstance(body, dict):
        if body.get("error"):
            return str(body["error"])
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            return ", ".join(str(e) for e in errors)
        if errors:
            return str(errors)
    return "Error changing password"
