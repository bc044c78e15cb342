from __future__ import annotations

"""
Data Models Package.

Re-exports the session core models:
    from app.models import UserRole, CredentialPair, BiometricResult
"""

from app.models.enums import (
    AuthenticationType,
    BiometricError,
    BiometricState,
    LandingScreen,
    UserRole,
)
from app.models.auth_models import (
    AuthErrorCode,
    AuthResult,
    BiometricPreference,
    BiometricResult,
    BootstrapOutcome,
    CredentialPair,
    HardwareAuthResult,
    TokenPair,
    ValidationResult,
)

__all__ = [
    "AuthenticationType",
    "BiometricError",
    "BiometricState",
    "LandingScreen",
    "UserRole",
    "AuthErrorCode",
    "AuthResult",
    "BiometricPreference",
    "BiometricResult",
    "BootstrapOutcome",
    "CredentialPair",
    "HardwareAuthResult",
    "TokenPair",
    "ValidationResult",
]
