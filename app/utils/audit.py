"""
Structured Audit Logging Utility.

Every security-relevant state change of the session core (login, forced
logout, token rotation, biometric lockout, ...) is emitted as one
Pydantic-validated JSON audit line.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional, Union

from pydantic import BaseModel, Field

from app.logger import StructuredLogger

__all__ = ["AuditAction", "AuditEvent", "log_audit_event"]

# Flat scalars only; nested structures do not belong in the audit trail.
DetailValue = Union[str, int, float, bool, None]


class AuditAction(StrEnum):
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    FORCED_LOGOUT = "FORCED_LOGOUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    SESSION_RESUMED = "SESSION_RESUMED"
    BIOMETRIC_ENABLED = "BIOMETRIC_ENABLED"
    BIOMETRIC_DECLINED = "BIOMETRIC_DECLINED"
    BIOMETRIC_DISABLED = "BIOMETRIC_DISABLED"
    BIOMETRIC_LOCKOUT = "BIOMETRIC_LOCKOUT"
    ACCOUNT_DELETED = "ACCOUNT_DELETED"


class AuditEvent(BaseModel):
    """Schema-validated representation of a single audit trail entry."""

    timestamp: str
    action: AuditAction
    role: str
    details: dict[str, DetailValue] = Field(default_factory=dict)


def log_audit_event(
    logger: StructuredLogger,
    action: AuditAction,
    role: Optional[str],
    details: Optional[dict[str, DetailValue]] = None,
) -> AuditEvent:
    """Validate and log an audit event, returning the event emitted.

    Args:
        logger: The logger instance to write to.
        action: What happened.
        role: Role the event applies to, or ``None`` when no role is
            known (recorded as ``"none"``).
        details: Optional flat context.  Never pass token values here.
    """
    event = AuditEvent(
        timestamp=datetime.now(timezone.utc).isoformat(),
        action=action,
        role=str(role) if role else "none",
        details=details or {},
    )
    logger.info("AUDIT: %s", json.dumps(event.model_dump(mode="json"), default=str))
    return event
