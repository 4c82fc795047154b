"""
Data Models Package.

Re-exports the Pydantic models and enumerations:
    from chronos.models import User, AuthView, FlowError, IdPResult
"""

from __future__ import annotations

from chronos.models.activity import ActivityLog
from chronos.models.auth_models import (
    AuthSession,
    Classification,
    FlowError,
    IdPError,
    IdPResult,
    Profile,
    SessionUser,
    SignUpData,
    SignUpUser,
    ValidationResult,
)
from chronos.models.enums import (
    AuthEvent,
    AuthView,
    CooldownReason,
    ErrorKind,
    FlowTerminal,
    FlowTrigger,
    Severity,
)
from chronos.models.user import User

__all__ = [
    "ActivityLog",
    "AuthEvent",
    "AuthSession",
    "AuthView",
    "Classification",
    "CooldownReason",
    "ErrorKind",
    "FlowError",
    "FlowTerminal",
    "FlowTrigger",
    "IdPError",
    "IdPResult",
    "Profile",
    "SessionUser",
    "Severity",
    "SignUpData",
    "SignUpUser",
    "User",
    "ValidationResult",
]
