"""
Shared Enumerations for Session Core Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents, so
``role == "patient"`` keeps working for values read from storage.
"""

from __future__ import annotations
from enum import StrEnum


class UserRole(StrEnum):
    """Account roles recognised by the backend.

    Each role owns its own credential pair in secure storage; tokens
    are never read across roles.
    """

    PATIENT = "patient"
    NURSE = "nurse"


class BiometricState(StrEnum):
    """Per-device biometric gate state (patients only)."""

    NOT_ENABLED = "NOT_ENABLED"
    ENABLED = "ENABLED"
    LOCKED_OUT = "LOCKED_OUT"


class BiometricError(StrEnum):
    """Failure reasons returned by ``BiometricGatekeeper.authenticate``.

    ``USER_CANCEL`` and ``USER_FALLBACK`` keep the hardware's spelling
    because that is what the prompt reports.  Other hardware-specific
    codes are passed through as plain strings.
    """

    NOT_ENABLED = "NOT_ENABLED"
    NOT_AVAILABLE = "NOT_AVAILABLE"
    LOCKED_OUT = "LOCKED_OUT"
    LOCKOUT_TRIGGERED = "LOCKOUT_TRIGGERED"
    USER_CANCEL = "UserCancel"
    USER_FALLBACK = "UserFallback"
    SYSTEM_ERROR = "SYSTEM_ERROR"


class LandingScreen(StrEnum):
    """Top-level screens the core can send the UI to.

    Session Bootstrap only ever settles on ``LOGIN`` or ``PATIENT_HOME``;
    ``NURSE_HOME`` is reached through manual login.
    """

    LOGIN = "LOGIN"
    PATIENT_HOME = "PATIENT_HOME"
    NURSE_HOME = "NURSE_HOME"


class AuthenticationType(StrEnum):
    """Biometric sensor kinds reported by device hardware."""

    FINGERPRINT = "FINGERPRINT"
    FACIAL_RECOGNITION = "FACIAL_RECOGNITION"
    IRIS = "IRIS"
