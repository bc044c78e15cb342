"""Shared utilities for the session core.

Convenience re-exports so consumers can ``from app.utils import
log_audit_event`` while ``app.utils.audit`` remains importable.
"""

from app.utils.audit import AuditAction, AuditEvent, log_audit_event

__all__ = [
    "AuditAction",
    "AuditEvent",
    "log_audit_event",
]
