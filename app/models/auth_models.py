"""
Authentication Pipeline Models.

Pydantic models and enumerations for the contracts between the session
core services and the UI layer.  Every auth operation returns a
structured, inspectable result rather than raw strings or exception
side-channels.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional, Union

from app.models.enums import BiometricError, LandingScreen, UserRole

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class AuthErrorCode(StrEnum):
    """Categories of account-operation failures shown by the UI layer."""

    INVALID_CREDENTIALS = "invalid_credentials"
    NETWORK_ERROR = "network_error"
    RATE_LIMITED = "rate_limited"
    VALIDATION_ERROR = "validation_error"
    SESSION_EXPIRED = "session_expired"
    UNKNOWN_ERROR = "unknown_error"


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

class CredentialPair(BaseModel):
    """Access/refresh tokens belonging to exactly one role."""

    role: UserRole
    access_token: str
    refresh_token: str


class TokenPair(BaseModel):
    """Payload of ``POST /api/token/refresh/`` and of the login endpoints.

    ``refresh`` is only present when the backend rotates refresh
    tokens; login responses always carry it.
    """

    access: str = Field(min_length=1)
    refresh: Optional[str] = None

    model_config = {"extra": "ignore"}


# ---------------------------------------------------------------------------
# Biometric records
# ---------------------------------------------------------------------------

class BiometricPreference(BaseModel):
    """Opt-in record persisted under ``biometricPreferences``.

    Field names follow the stored JSON so records written by earlier
    app versions still parse.
    """

    enabled: bool
    userType: UserRole
    setupDate: str  # ISO-8601
    version: str = "1.0"

    model_config = {"extra": "ignore"}


class HardwareAuthResult(BaseModel):
    """Outcome of one device biometric prompt."""

    success: bool
    error: Optional[str] = None


class BiometricResult(BaseModel):
    """Outcome of ``BiometricGatekeeper.authenticate``.

    ``error`` is a ``BiometricError`` for the gate's own reasons, or the
    raw hardware code string for anything else.
    """

    success: bool
    error: Optional[Union[BiometricError, str]] = None
    user_type: Optional[UserRole] = None
    failed_attempts: Optional[int] = None


# ---------------------------------------------------------------------------
# Unified auth response
# ---------------------------------------------------------------------------

class AuthResult(BaseModel):
    """Unified response for login, logout, password and account operations.

    Attributes
    ----------
    success:
        ``True`` when the operation completed without error.
    error_code:
        Structured error category (``None`` on success).
    error_message:
        Human-readable message.  Also carries informational text on
        success (e.g. the password-reset confirmation).
    role:
        Role of the session the operation applied to.
    """

    success: bool
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None
    role: Optional[UserRole] = None

    model_config = {"from_attributes": True}


class ValidationResult(BaseModel):
    """Result of a single client-side field validation check."""

    is_valid: bool
    error_message: Optional[str] = None


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------

class BootstrapOutcome(BaseModel):
    """Where Session Bootstrap landed, and why."""

    landing: LandingScreen
    role: Optional[UserRole] = None
    reason: str
