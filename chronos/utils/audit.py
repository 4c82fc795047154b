"""
Structured Audit Logging Utility.

Every identity state change (sign-in, sign-out, sign-up, password update)
is logged as a structured JSON object validated against ``AuditEvent``.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field

from chronos.logger import StructuredLogger

__all__ = ["AuditAction", "AuditEvent", "log_audit_event"]

# Flat scalar values only; nested structures belong in their own model.
DetailValue = Union[str, int, float, bool, None]


class AuditAction:
    """Action names used in the identity audit trail."""

    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    SIGN_UP = "SIGN_UP"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    RECOVERY_CODE_VERIFIED = "RECOVERY_CODE_VERIFIED"
    PASSWORD_UPDATED = "PASSWORD_UPDATED"


class AuditEvent(BaseModel):
    """Schema-validated representation of a single audit trail entry."""

    timestamp: str
    action: str
    user_id: str
    details: dict[str, DetailValue] = Field(default_factory=dict)


def log_audit_event(
    logger: StructuredLogger,
    action: str,
    user_id: str,
    details: Optional[dict[str, DetailValue]] = None,
) -> AuditEvent:
    """Log a structured JSON audit event and return it.

    Args:
        logger: The logger instance to write to.
        action: One of the ``AuditAction`` names.
        user_id: Supabase id of the affected user, or the normalised
            e-mail when no id is known yet (sign-up, reset requests).
        details: Optional additional context.  Never pass secrets here.
    """
    event = AuditEvent(
        timestamp=datetime.now(timezone.utc).isoformat(),
        action=action,
        user_id=user_id,
        details=details or {},
    )
    logger.info(
        "AUDIT: %s",
        json.dumps(event.model_dump(), default=str),
        extra={"event": action, "user_id": user_id},
    )
    return event
