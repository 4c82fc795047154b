"""
Shared Enumerations for Chronos Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents, so the raw
event names emitted by Supabase (``"SIGNED_IN"``) can be passed through
``AuthEvent(...)`` unchanged.
"""

from __future__ import annotations
from enum import StrEnum


class AuthEvent(StrEnum):
    """Auth-state events emitted by the identity provider."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"
    MFA_CHALLENGE_VERIFIED = "MFA_CHALLENGE_VERIFIED"


class AuthView(StrEnum):
    """Steps of the authentication flow."""

    LOGIN = "login"
    SIGNUP = "signup"
    FORGOT_PASSWORD = "forgotPassword"
    VERIFY_CODE = "verifyCode"
    RESET_PASSWORD = "resetPassword"


class FlowTerminal(StrEnum):
    """Targets of a flow transition that are not themselves views.

    ``SUCCESS`` is a display state only: the flow cannot be submitted from
    it and closing or restarting returns to ``AuthView.LOGIN``.
    """

    CLOSED = "closed"
    SUCCESS = "success"


class FlowTrigger(StrEnum):
    """User or provider actions that drive the auth flow."""

    SUBMIT = "submit"
    FORGOT_PASSWORD = "forgot_password"
    REGISTER = "register"
    RESEND = "resend"
    BACK = "back"
    RECOVERY_REQUESTED = "recovery_requested"


class Severity(StrEnum):
    """How a flow error is presented."""

    ERROR = "error"
    WARNING = "warning"
    RATE_LIMIT = "rateLimit"


class ErrorKind(StrEnum):
    """Failure taxonomy shared by the adapter boundary and the auth flow."""

    VALIDATION = "validation"
    NETWORK = "network"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    UNKNOWN = "unknown"


class CooldownReason(StrEnum):
    """Why the flow cooldown is running."""

    RATE_LIMIT = "rate_limit"
    CODE_SENT = "code_sent"
