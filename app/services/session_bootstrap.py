"""
Session Bootstrap.

Runs once on cold start and settles into exactly one of two end states:
the patient's authenticated home screen, or the manual login screen.

Nurses never resume automatically; only a stored patient refresh token
triggers a resume attempt, gated by biometrics when the patient opted in.
"""

from __future__ import annotations

from app.auth import SessionManager
from app.config import AppConfig
from app.errors import TokenRefreshError
from app.logger import StructuredLogger
from app.models.auth_models import BootstrapOutcome
from app.models.enums import BiometricError, LandingScreen, UserRole
from app.services.biometric_gatekeeper import BiometricGatekeeper
from app.services.navigation import Navigator
from app.services.token_refresh import TokenRefresher
from app.services.token_store import TokenStore
from app.utils.audit import AuditAction, log_audit_event

_LOCKOUT_ERRORS: tuple[str, ...] = (
    BiometricError.LOCKED_OUT,
    BiometricError.LOCKOUT_TRIGGERED,
)


class SessionBootstrap:
    """Decides between silent/biometric resume and the login screen."""

    def __init__(
        self,
        tokens: TokenStore,
        session: SessionManager,
        gatekeeper: BiometricGatekeeper,
        refresher: TokenRefresher,
        navigator: Navigator,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        self._tokens: TokenStore = tokens
        self._session: SessionManager = session
        self._gatekeeper: BiometricGatekeeper = gatekeeper
        self._refresher: TokenRefresher = refresher
        self._navigator: Navigator = navigator
        self._config: AppConfig = config
        self._logger: StructuredLogger = logger

    async def run(self) -> BootstrapOutcome:
        """Resume the patient session if possible, else land on login.

        Never raises.  An unexpected error clears the patient tokens and
        lands on login.
        """
        try:
            return await self._run()
        except Exception as exc:
            self._logger.error("Session bootstrap failed: %s", exc, exc_info=True)
            try:
                await self._tokens.clear_role(UserRole.PATIENT)
            except Exception as clear_exc:
                self._logger.error("Could not clear patient tokens: %s", clear_exc)
            return self._to_login("bootstrap_error")

    async def _run(self) -> BootstrapOutcome:
        if self._session.is_ready:
            await self._session.wait_until_ready()
        else:
            await self._session.initialize(self._tokens)

        refresh_token = await self._tokens.get_refresh_token(UserRole.PATIENT)
        if not refresh_token:
            self._logger.info("No stored patient refresh token. Showing login.")
            return self._to_login("no_refresh_token")

        if await self._gatekeeper.should_attempt(UserRole.PATIENT):
            self._logger.info("Biometric authentication enabled. Prompting.")
            result = await self._gatekeeper.authenticate()
            if not result.success:
                if result.error in _LOCKOUT_ERRORS:
                    self._logger.warning("Biometric lockout. Credentials already cleared.")
                else:
                    self._logger.info(
                        "Biometric authentication did not succeed. Showing login.",
                        extra={"error": str(result.error)},
                    )
                return self._to_login(f"biometric_{result.error}")
        else:
            self._logger.info("Biometrics not applicable. Attempting silent resume.")

        try:
            pair = await self._refresher.refresh(
                refresh_token, timeout=self._config.BOOTSTRAP_REFRESH_TIMEOUT_S,
            )
        except TokenRefreshError as exc:
            self._logger.warning(
                "Stored refresh token could not be exchanged. Showing login.",
                extra={"reason": exc.reason},
            )
            await self._tokens.clear_role(UserRole.PATIENT)
            return self._to_login(f"refresh_{exc.reason}")

        await self._tokens.apply_refresh(UserRole.PATIENT, pair.access, pair.refresh)
        self._session.begin_session(UserRole.PATIENT)
        self._navigator.enter_authenticated(UserRole.PATIENT)
        log_audit_event(self._logger, AuditAction.SESSION_RESUMED, UserRole.PATIENT)
        return BootstrapOutcome(
            landing=LandingScreen.PATIENT_HOME, role=UserRole.PATIENT, reason="resumed",
        )

    def _to_login(self, reason: str) -> BootstrapOutcome:
        self._session.end_session()
        self._navigator.reset_to_login()
        return BootstrapOutcome(landing=LandingScreen.LOGIN, role=None, reason=reason)
