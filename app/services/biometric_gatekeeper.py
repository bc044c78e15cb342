"""
Biometric Gatekeeper.

Mediates between stored patient credentials and the device's biometric
hardware.  Two policies are enforced here:

* **Opt-in, patients only.**  Biometric resume exists only for the
  patient role, and only after the patient accepted the set-up prompt
  shown once after a manual login.
* **Failure lockout.**  Consecutive non-cancel failures are counted in
  secure storage (so the count survives restarts).  Reaching the
  threshold wipes every stored credential pair, records a lockout
  timestamp and refuses biometric attempts until the window elapses.
  Expiry is checked lazily whenever lockout status is queried.

State machine::

    NOT_ENABLED ──opt-in──► ENABLED ──N failures──► LOCKED_OUT
         ▲                    │  ▲                      │
         └──── disable() ─────┘  └──── window elapsed ──┘
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Protocol

from pydantic import ValidationError

from app.config import AppConfig
from app.logger import StructuredLogger
from app.models.auth_models import BiometricPreference, BiometricResult, HardwareAuthResult
from app.models.enums import AuthenticationType, BiometricError, BiometricState, UserRole
from app.services.navigation import (
    BIOMETRIC_TEMPORARILY_DISABLED_NOTICE,
    LOCKOUT_NOTICE,
    Navigator,
)
from app.services.secure_store import (
    BIOMETRIC_FAILED_ATTEMPTS_KEY,
    BIOMETRIC_LOCKOUT_TIMESTAMP_KEY,
    BIOMETRIC_PREFERENCES_KEY,
    SecureStore,
)
from app.services.token_store import TokenStore
from app.utils.audit import AuditAction, log_audit_event

# Hardware errors that mean "the user chose not to", not "wrong biometric".
_NON_FAILURE_ERRORS: tuple[str, ...] = (
    BiometricError.USER_CANCEL,
    BiometricError.USER_FALLBACK,
)

_TYPE_LABELS: dict[AuthenticationType, str] = {
    AuthenticationType.FINGERPRINT: "Touch ID",
    AuthenticationType.FACIAL_RECOGNITION: "Face ID",
    AuthenticationType.IRIS: "Iris",
}

ConsentCallback = Callable[[str], Awaitable[bool]]
"""Asks the user whether to enable the named biometric type."""


# ---------------------------------------------------------------------------
# Hardware interface
# ---------------------------------------------------------------------------

class BiometricHardware(Protocol):
    """Awaitable view of the platform's local-authentication API."""

    async def has_hardware(self) -> bool: ...

    async def is_enrolled(self) -> bool: ...

    async def enrolled_level(self) -> int: ...

    async def supported_types(self) -> list[AuthenticationType]: ...

    async def authenticate(self, prompt: str) -> HardwareAuthResult: ...


class UnavailableBiometricHardware:
    """Hardware adapter for devices (and headless runs) without biometrics."""

    async def has_hardware(self) -> bool:
        return False

    async def is_enrolled(self) -> bool:
        return False

    async def enrolled_level(self) -> int:
        return 0

    async def supported_types(self) -> list[AuthenticationType]:
        return []

    async def authenticate(self, prompt: str) -> HardwareAuthResult:
        return HardwareAuthResult(success=False, error=BiometricError.NOT_AVAILABLE)


# ---------------------------------------------------------------------------
# Gatekeeper
# ---------------------------------------------------------------------------

class BiometricGatekeeper:
    """Decides whether and how biometrics may resume a patient session.

    Parameters
    ----------
    store:
        Secure key/value store holding preference and lockout state.
    tokens:
        Token store, wiped on security lockout.
    hardware:
        Device biometric adapter.
    navigator:
        UI side-channel for the lockout notices.
    config:
        Application configuration (threshold, window, prompt text).
    logger:
        A ``StructuredLogger`` instance.
    clock:
        Returns the current time in seconds since the epoch.
    """

    def __init__(
        self,
        store: SecureStore,
        tokens: TokenStore,
        hardware: BiometricHardware,
        navigator: Navigator,
        config: AppConfig,
        logger: StructuredLogger,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store: SecureStore = store
        self._tokens: TokenStore = tokens
        self._hardware: BiometricHardware = hardware
        self._navigator: Navigator = navigator
        self._config: AppConfig = config
        self._logger: StructuredLogger = logger
        self._clock: Callable[[], float] = clock

    # ==================================================================
    # Device capability
    # ==================================================================

    async def is_available(self) -> bool:
        """``True`` when hardware exists, is enrolled and reports a level > 0."""
        try:
            has_hardware = await self._hardware.has_hardware()
            enrolled = await self._hardware.is_enrolled()
            level = await self._hardware.enrolled_level()
        except Exception as exc:
            self._logger.error("Error checking biometric availability: %s", exc)
            return False

        self._logger.debug(
            "Biometric capabilities.",
            extra={"hardware": has_hardware, "enrolled": enrolled, "level": level},
        )
        return has_hardware and enrolled and level > 0

    async def get_supported_types(self) -> list[str]:
        """Display names of the supported sensors, e.g. ``["Face ID"]``."""
        try:
            types = await self._hardware.supported_types()
        except Exception as exc:
            self._logger.error("Error getting supported biometric types: %s", exc)
            return []
        return [_TYPE_LABELS.get(t, "Biometric") for t in types]

    # ==================================================================
    # Preference record
    # ==================================================================

    async def get_preference(self) -> Optional[BiometricPreference]:
        """Return the stored opt-in record, or ``None`` if absent or unreadable."""
        raw = await self._store.get_item(BIOMETRIC_PREFERENCES_KEY)
        if not raw:
            return None
        try:
            return BiometricPreference.model_validate_json(raw)
        except ValidationError as exc:
            self._logger.warning("Stored biometric preference is malformed: %s", exc)
            return None

    async def set_preference(self, enabled: bool, role: UserRole) -> BiometricPreference:
        """Persist the user's opt-in choice.

        Raises:
            ValueError: If *role* is not ``patient``.
        """
        if role != UserRole.PATIENT:
            raise ValueError("Biometric preferences exist only for patients.")

        preference = BiometricPreference(
            enabled=enabled,
            userType=UserRole.PATIENT,
            setupDate=datetime.now(timezone.utc).isoformat(),
            version=self._config.BIOMETRIC_PREFERENCE_VERSION,
        )
        await self._store.set_item(BIOMETRIC_PREFERENCES_KEY, preference.model_dump_json())
        log_audit_event(
            self._logger,
            AuditAction.BIOMETRIC_ENABLED if enabled else AuditAction.BIOMETRIC_DECLINED,
            role,
        )
        return preference

    # ==================================================================
    # Failure counter and lockout
    # ==================================================================

    async def get_failed_attempts(self) -> int:
        raw = await self._store.get_item(BIOMETRIC_FAILED_ATTEMPTS_KEY)
        if not raw:
            return 0
        try:
            return int(raw)
        except ValueError:
            self._logger.warning("Stored failed-attempt count %r is not an integer.", raw)
            return 0

    async def clear_failed_attempts(self) -> None:
        await self._store.delete_item(BIOMETRIC_FAILED_ATTEMPTS_KEY)

    async def clear_lockout(self) -> None:
        """Delete the lockout record and reset the failure counter."""
        await self._store.delete_item(BIOMETRIC_LOCKOUT_TIMESTAMP_KEY)
        await self.clear_failed_attempts()
        self._logger.info("Biometric lockout cleared.")

    async def lockout_remaining_ms(self) -> int:
        """Milliseconds left in the current lockout, ``0`` when not locked.

        An expired or unreadable lockout record is cleared on the way.
        """
        raw = await self._store.get_item(BIOMETRIC_LOCKOUT_TIMESTAMP_KEY)
        if not raw:
            return 0
        try:
            locked_at_ms = int(raw)
        except ValueError:
            self._logger.warning("Stored lockout timestamp %r is not an integer.", raw)
            await self.clear_lockout()
            return 0

        elapsed = self._now_ms() - locked_at_ms
        if elapsed >= self._config.lockout_window_ms:
            await self.clear_lockout()
            return 0
        return self._config.lockout_window_ms - elapsed

    async def is_locked_out(self) -> bool:
        remaining = await self.lockout_remaining_ms()
        self._logger.debug("Lockout check.", extra={"remaining_ms": remaining})
        return remaining > 0

    async def _record_failure(self) -> bool:
        """Count one failure; return ``True`` if it triggered the lockout."""
        attempts = await self.get_failed_attempts() + 1
        await self._store.set_item(BIOMETRIC_FAILED_ATTEMPTS_KEY, str(attempts))
        self._logger.info("Biometric failed attempts incremented.", extra={"attempts": attempts})

        if attempts >= self._config.BIOMETRIC_MAX_FAILED_ATTEMPTS:
            await self._initiate_security_lockout(attempts)
            return True
        return False

    async def _initiate_security_lockout(self, attempts: int) -> None:
        # Wipes both roles' credentials, not only the patient's.
        await self._tokens.clear_all()
        await self._store.set_item(BIOMETRIC_LOCKOUT_TIMESTAMP_KEY, str(self._now_ms()))
        await self.clear_failed_attempts()

        log_audit_event(
            self._logger,
            AuditAction.BIOMETRIC_LOCKOUT,
            UserRole.PATIENT,
            {"attempts": attempts, "window_s": self._config.BIOMETRIC_LOCKOUT_SECONDS},
        )
        self._navigator.show_notice(LOCKOUT_NOTICE)

    # ==================================================================
    # Authentication
    # ==================================================================

    async def authenticate(self) -> BiometricResult:
        """Prompt for biometrics and apply the failure policy.

        Returns
        -------
        BiometricResult
            ``success=True`` with ``user_type=patient``, or a failure
            whose ``error`` is one of ``LOCKED_OUT``, ``NOT_ENABLED``,
            ``NOT_AVAILABLE``, ``UserCancel``, ``UserFallback``,
            ``LOCKOUT_TRIGGERED``, ``SYSTEM_ERROR`` or the hardware's
            own code.
        """
        if await self.is_locked_out():
            self._navigator.show_notice(BIOMETRIC_TEMPORARILY_DISABLED_NOTICE)
            return BiometricResult(success=False, error=BiometricError.LOCKED_OUT)

        preference = await self.get_preference()
        if preference is None or not preference.enabled or preference.userType != UserRole.PATIENT:
            self._logger.info("Biometric authentication not enabled by user.")
            return BiometricResult(success=False, error=BiometricError.NOT_ENABLED)

        if not await self.is_available():
            self._logger.info("Biometric authentication not available.")
            return BiometricResult(success=False, error=BiometricError.NOT_AVAILABLE)

        try:
            outcome = await self._hardware.authenticate(self._config.BIOMETRIC_PROMPT_MESSAGE)
        except Exception as exc:
            self._logger.error("Biometric hardware error: %s", exc)
            if await self._record_failure():
                return BiometricResult(success=False, error=BiometricError.LOCKOUT_TRIGGERED)
            return BiometricResult(
                success=False,
                error=BiometricError.SYSTEM_ERROR,
                failed_attempts=await self.get_failed_attempts(),
            )

        if outcome.success:
            await self.clear_lockout()
            self._logger.info("Biometric authentication succeeded.")
            return BiometricResult(success=True, user_type=UserRole.PATIENT)

        if outcome.error in _NON_FAILURE_ERRORS:
            self._logger.info("User cancelled or chose fallback.", extra={"error": outcome.error})
            return BiometricResult(success=False, error=outcome.error)

        if await self._record_failure():
            return BiometricResult(success=False, error=BiometricError.LOCKOUT_TRIGGERED)

        return BiometricResult(
            success=False,
            error=outcome.error or BiometricError.SYSTEM_ERROR,
            failed_attempts=await self.get_failed_attempts(),
        )

    async def should_attempt(self, role: Optional[UserRole]) -> bool:
        """``True`` only for an opted-in patient on capable, unlocked hardware."""
        if role != UserRole.PATIENT:
            self._logger.debug("Biometric authentication is only available for patients.")
            return False

        preference = await self.get_preference()
        if preference is None or not preference.enabled or preference.userType != role:
            return False
        if not await self.is_available():
            return False
        return not await self.is_locked_out()

    async def state(self) -> BiometricState:
        if await self.is_locked_out():
            return BiometricState.LOCKED_OUT
        preference = await self.get_preference()
        if preference is not None and preference.enabled and preference.userType == UserRole.PATIENT:
            return BiometricState.ENABLED
        return BiometricState.NOT_ENABLED

    # ==================================================================
    # Opt-in / opt-out
    # ==================================================================

    async def prompt_for_setup(self, role: UserRole, consent: ConsentCallback) -> bool:
        """Offer biometric login once, right after a manual patient login.

        The offer is skipped for nurses, on incapable hardware, and when
        a preference (accepted or declined) already exists.  Declining
        records ``enabled=False`` so the offer is not repeated.

        Returns:
            ``True`` when biometrics ended up enabled.
        """
        if role != UserRole.PATIENT:
            self._logger.info("Biometric set-up is only offered to patients.")
            return False
        if await self.get_preference() is not None:
            return False
        if not await self.is_available():
            self._logger.info("Biometric authentication not available on this device.")
            return False

        supported = await self.get_supported_types()
        label = supported[0] if supported else "Biometric"

        accepted = bool(await consent(label))
        await self.set_preference(accepted, role)
        return accepted

    async def disable(self) -> None:
        """Opt out: delete the preference and any failure/lockout state."""
        await self._store.delete_item(BIOMETRIC_PREFERENCES_KEY)
        await self.clear_failed_attempts()
        await self.clear_lockout()
        log_audit_event(self._logger, AuditAction.BIOMETRIC_DISABLED, UserRole.PATIENT)

    async def reset(self) -> None:
        """Delete every biometric key.  Troubleshooting aid."""
        for key in (
            BIOMETRIC_PREFERENCES_KEY,
            BIOMETRIC_FAILED_ATTEMPTS_KEY,
            BIOMETRIC_LOCKOUT_TIMESTAMP_KEY,
        ):
            await self._store.delete_item(key)
        self._logger.info("All biometric data reset.")

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)
