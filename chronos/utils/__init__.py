"""Shared utilities for the Chronos identity core."""

from chronos.utils.audit import AuditAction, AuditEvent, log_audit_event

__all__ = ["AuditAction", "AuditEvent", "log_audit_event"]
