"""
Error Classifier.

Normalises every failure shape the auth flow can encounter into a single
``Classification`` (title, message, severity, optional cooldown).

Inputs range from typed ``IdPError`` values produced by the adapter to
whatever else reaches the flow: plain strings, ``None``, mappings with a
``message`` or nested ``error`` field, exceptions, and arbitrary objects
that only expose non-standard attributes.  The message returned is never
empty and never the literal ``"{}"``.

Precedence (first match wins):

1. network / connectivity failure  → "Connection Blocked"
2. HTTP 429 or rate-limit wording  → "Rate Limit" (cooldown 60 s)
3. invalid credentials             → "Access Denied"
4. invalid / expired one-time code → "Invalid Code" (code steps only)
5. anything else                   → "System Alert"

All functions here are pure: no logging, no I/O.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Optional

import httpx

from chronos.models.auth_models import (
    EMPTY_MESSAGE_FALLBACK,
    INVALID_CODE_KEYWORDS,
    INVALID_CREDENTIAL_KEYWORDS,
    NETWORK_KEYWORDS,
    PLACEHOLDER_MESSAGES,
    RATE_LIMIT_KEYWORDS,
    Classification,
    FlowError,
    IdPError,
)
from chronos.models.enums import AuthView, ErrorKind, Severity

__all__ = ["RATE_LIMIT_COOLDOWN_S", "classify", "extract_message", "extract_status"]

RATE_LIMIT_COOLDOWN_S: int = 60

_CODE_VIEWS: frozenset[AuthView] = frozenset({AuthView.VERIFY_CODE, AuthView.RESET_PASSWORD})

_CONNECTION_BLOCKED_MESSAGE: str = (
    "Unable to reach the authentication server. Check your internet "
    "connection and any ad or script blocker active on this site, "
    "then try again."
)
_RATE_LIMIT_MESSAGE: str = (
    f"Too many requests. Please wait {RATE_LIMIT_COOLDOWN_S} seconds."
)
_ACCESS_DENIED_MESSAGE: str = (
    "The password or email provided does not match our records."
)
_INVALID_CODE_MESSAGE: str = "The 6-digit code is incorrect or has expired."

_MESSAGE_FIELDS: tuple[str, ...] = ("message", "error_description", "msg", "detail")
_STATUS_FIELDS: tuple[str, ...] = ("status", "status_code", "statusCode")
_MAX_NESTING: int = 3


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

def _field(raw: object, key: str) -> object:
    if isinstance(raw, Mapping):
        return raw.get(key)
    return getattr(raw, key, None)


def _own_properties(raw: object) -> dict[str, object]:
    if isinstance(raw, Mapping):
        items = raw.items()
    elif hasattr(raw, "__dict__"):
        items = vars(raw).items()
    else:
        return {}
    return {
        str(key): value
        for key, value in items
        if not str(key).startswith("_") and value not in (None, "", {}, [])
    }


def _extract(raw: object, depth: int = 0) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, IdPError):
        return raw.message

    for key in _MESSAGE_FIELDS:
        value = _field(raw, key)
        if isinstance(value, str) and value.strip():
            return value

    nested = _field(raw, "error")
    if isinstance(nested, str) and nested.strip():
        return nested
    if nested is not None and depth < _MAX_NESTING:
        inner = _extract(nested, depth + 1)
        if inner.strip():
            return inner

    if isinstance(raw, BaseException):
        text = str(raw)
        if text.strip():
            return text

    own = _own_properties(raw)
    if own:
        return json.dumps(own, default=str, sort_keys=True)
    return ""


def extract_message(raw: object) -> str:
    """Return the most informative human-readable message in *raw*.

    Falls back to a generic "empty response" notice so callers never have
    to handle a blank string.
    """
    message = _extract(raw).strip()
    if message.lower() in PLACEHOLDER_MESSAGES:
        return EMPTY_MESSAGE_FALLBACK
    return message


def extract_status(raw: object) -> Optional[int]:
    """Return an HTTP status carried by *raw*, if any."""
    if raw is None or isinstance(raw, str):
        return None
    for key in _STATUS_FIELDS:
        value = _field(raw, key)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    return None


def _extract_code(raw: object) -> str:
    if raw is None or isinstance(raw, str):
        return ""
    value = _field(raw, "code")
    return value if isinstance(value, str) else ""


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def _is_network_failure(raw: object, text: str) -> bool:
    if isinstance(raw, IdPError) and raw.kind == ErrorKind.NETWORK:
        return True
    if isinstance(raw, (ConnectionError, TimeoutError, httpx.TransportError)):
        return True
    return _contains_any(text, NETWORK_KEYWORDS)


def _is_rate_limited(raw: object, status: Optional[int], text: str) -> bool:
    if isinstance(raw, IdPError) and raw.kind == ErrorKind.RATE_LIMIT:
        return True
    return status == 429 or _contains_any(text, RATE_LIMIT_KEYWORDS)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def classify(raw: object, view: Optional[AuthView] = None) -> Classification:
    """Classify *raw* for display in the auth flow.

    Parameters
    ----------
    raw:
        Any failure value: ``IdPError``, exception, mapping, string, object
        or ``None``.
    view:
        The flow step that produced the failure.  Code-related wording is
        only interpreted as an invalid code on ``verifyCode`` and
        ``resetPassword``.

    Returns
    -------
    Classification
    """
    message = extract_message(raw)
    status = extract_status(raw)
    # Match on what the provider said, not on the fallback notice.
    text = f"{_extract(raw)} {_extract_code(raw)}".lower()

    if _is_network_failure(raw, text):
        return Classification(
            error=FlowError(
                title="Connection Blocked",
                message=_CONNECTION_BLOCKED_MESSAGE,
                severity=Severity.ERROR,
            ),
            kind=ErrorKind.NETWORK,
        )

    if _is_rate_limited(raw, status, text):
        return Classification(
            error=FlowError(
                title="Rate Limit",
                message=_RATE_LIMIT_MESSAGE,
                severity=Severity.RATE_LIMIT,
            ),
            kind=ErrorKind.RATE_LIMIT,
            cooldown_seconds=RATE_LIMIT_COOLDOWN_S,
        )

    if _contains_any(text, INVALID_CREDENTIAL_KEYWORDS):
        return Classification(
            error=FlowError(
                title="Access Denied",
                message=_ACCESS_DENIED_MESSAGE,
                severity=Severity.ERROR,
            ),
            kind=ErrorKind.AUTH,
        )

    if view in _CODE_VIEWS and _contains_any(text, INVALID_CODE_KEYWORDS):
        return Classification(
            error=FlowError(
                title="Invalid Code",
                message=_INVALID_CODE_MESSAGE,
                severity=Severity.ERROR,
            ),
            kind=ErrorKind.AUTH,
        )

    return Classification(
        error=FlowError(title="System Alert", message=message, severity=Severity.ERROR),
        kind=ErrorKind.UNKNOWN,
    )
