"""
Authentication Pipeline Models.

Pydantic models for the contracts between the identity-provider adapter,
the error classifier and the auth flow.

Every adapter operation returns an ``IdPResult`` instead of raising, so the
layers above inspect a partially typed ``IdPError`` rather than sniffing
exception classes from the Supabase client.
"""

from __future__ import annotations

from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

from chronos.models.enums import ErrorKind, Severity

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Keyword tables for message classification
# ---------------------------------------------------------------------------
# Matched against the lower-cased provider message.  Supabase does not
# guarantee a stable ``code`` on every response, so message text is the
# common denominator.  Revalidate against the provider's documented error
# codes when upgrading the client.

NETWORK_KEYWORDS: tuple[str, ...] = (
    "failed to fetch",
    "fetch failed",
    "networkerror",
    "network error",
    "network request failed",
    "load failed",
    "connection refused",
    "connection reset",
    "connecterror",
    "name or service not known",
    "timed out",
)

RATE_LIMIT_KEYWORDS: tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "too many requests",
)

INVALID_CREDENTIAL_KEYWORDS: tuple[str, ...] = (
    "invalid login credentials",
    "invalid_credentials",
    "invalid_grant",
    "invalid email or password",
)

INVALID_CODE_KEYWORDS: tuple[str, ...] = (
    "otp",
    "token",
    "expired",
    "verify",
    "invalid code",
)

EMPTY_MESSAGE_FALLBACK: str = (
    "Security protocol returned an empty response. "
    "Verify your network or try again."
)

# Extracted messages that carry no information.
PLACEHOLDER_MESSAGES: frozenset[str] = frozenset({"", "{}", "[]", "undefined", "null", "none"})


# ---------------------------------------------------------------------------
# Flow-facing errors
# ---------------------------------------------------------------------------

class FlowError(BaseModel):
    """The single error banner shown by the auth flow."""

    title: str
    message: str
    severity: Severity = Severity.ERROR

    model_config = {"frozen": True}

    @classmethod
    def validation(cls, message: str) -> "FlowError":
        return cls(title="Invalid Input", message=message, severity=Severity.ERROR)


class Classification(BaseModel):
    """Output of ``classify()``: a flow error plus routing hints.

    Attributes
    ----------
    error:
        The normalised banner; ``message`` is never empty.
    kind:
        Which branch of the taxonomy matched.
    cooldown_seconds:
        Set when the caller must block retries (rate limiting).
    """

    error: FlowError
    kind: ErrorKind
    cooldown_seconds: Optional[int] = None

    @property
    def title(self) -> str:
        return self.error.title

    @property
    def message(self) -> str:
        return self.error.message

    @property
    def severity(self) -> Severity:
        return self.error.severity


class ValidationResult(BaseModel):
    """Result of a single client-side field validation check."""

    is_valid: bool
    error_message: Optional[str] = None


# ---------------------------------------------------------------------------
# Adapter boundary
# ---------------------------------------------------------------------------

class IdPError(BaseModel):
    """A provider failure, typed as far as the adapter can tell.

    Attributes
    ----------
    kind:
        ``NETWORK`` for transport failures, ``RATE_LIMIT`` for HTTP 429,
        ``AUTH`` for provider rejections, ``UNKNOWN`` otherwise.
    message:
        Provider message, possibly empty.
    status:
        HTTP status when the provider returned one.
    code:
        Provider error code (``invalid_credentials``, ...) when present.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN
    message: str = ""
    status: Optional[int] = None
    code: Optional[str] = None


class IdPResult(BaseModel, Generic[T]):
    """Either ``data`` or ``error``; never raises at the call site."""

    data: Optional[T] = None
    error: Optional[IdPError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SessionUser(BaseModel):
    """The user portion of an IdP session."""

    id: str
    email: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def metadata_name(self) -> Optional[str]:
        """Display name supplied at sign-up, if any."""
        for key in ("full_name", "name"):
            value = self.metadata.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None


class AuthSession(BaseModel):
    """An established IdP session.  Tokens stay inside the Supabase client."""

    user: SessionUser


class SignUpUser(BaseModel):
    """User object returned by sign-up.

    Supabase returns a user with an empty ``identities`` list when the
    e-mail is already registered (to avoid leaking account existence via
    an error).
    """

    id: str = ""
    email: str = ""
    identities: Optional[list[dict[str, Any]]] = None


class SignUpData(BaseModel):
    user: Optional[SignUpUser] = None
    session: Optional[AuthSession] = None

    @property
    def account_exists(self) -> bool:
        return (
            self.user is not None
            and self.user.identities is not None
            and len(self.user.identities) == 0
        )


class Profile(BaseModel):
    """Row of the ``profiles`` table."""

    full_name: Optional[str] = None
