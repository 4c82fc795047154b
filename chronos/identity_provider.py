"""
Identity Provider Boundary.

Thin async pass-through to Supabase auth and the two tables this core
touches (``profiles`` for display names, ``timer_logs`` for activity).

Every operation returns an ``IdPResult``: exceptions raised by the Supabase
client are converted to a typed ``IdPError`` here, at the boundary, so the
session and flow controllers never inspect raw exception classes.

When ``supabase_url`` or ``supabase_key`` is empty the client is **not**
created and the adapter runs in offline mode: every call yields a
``NETWORK`` error result and subscriptions are inert, so the application
degrades to a permanently logged-out state instead of crashing.

Usage (dependency injection at app startup)::

    idp = await SupabaseIdentityProvider.connect(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        logger=StructuredLogger(name="chronos.idp"),
    )
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar

import httpx
from supabase import AsyncClient, AuthApiError, AuthError, AuthRetryableError, acreate_client

from chronos.logger import StructuredLogger
from chronos.models.auth_models import (
    AuthSession,
    IdPError,
    IdPResult,
    Profile,
    SessionUser,
    SignUpData,
    SignUpUser,
)
from chronos.models.enums import AuthEvent, ErrorKind

T = TypeVar("T")

AuthStateCallback = Callable[[AuthEvent, Optional[AuthSession]], None]

PROFILES_TABLE: str = "profiles"
ACTIVITY_TABLE: str = "timer_logs"


class IdentityProviderOfflineError(RuntimeError):
    """Raised internally when the Supabase client was never created."""


class Subscription(Protocol):
    """Handle returned by ``on_auth_state_change``."""

    def unsubscribe(self) -> None: ...


class IdentityProvider(Protocol):
    """Operations the identity core consumes from the provider."""

    async def get_session(self) -> IdPResult[Optional[AuthSession]]: ...

    def on_auth_state_change(self, callback: AuthStateCallback) -> Subscription: ...

    async def sign_in_with_password(self, email: str, password: str) -> IdPResult[None]: ...

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any],
        redirect_url: str,
    ) -> IdPResult[SignUpData]: ...

    async def request_password_reset(self, email: str, redirect_url: str) -> IdPResult[None]: ...

    async def verify_recovery_code(self, email: str, token: str) -> IdPResult[None]: ...

    async def update_password(self, password: str) -> IdPResult[None]: ...

    async def sign_out(self) -> IdPResult[None]: ...

    async def get_profile(self, user_id: str) -> IdPResult[Optional[Profile]]: ...

    async def insert_activity(self, row: dict[str, Any]) -> IdPResult[None]: ...


class _InertSubscription:
    """Subscription used in offline mode; unsubscribing is a no-op."""

    def unsubscribe(self) -> None:
        return None


def _as_dict(obj: object) -> dict[str, Any]:
    if isinstance(obj, dict):
        return dict(obj)
    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        return dump()
    return dict(vars(obj))


class SupabaseIdentityProvider:
    """``IdentityProvider`` backed by ``supabase.AsyncClient``.

    Parameters
    ----------
    client:
        An initialised async Supabase client, or ``None`` for offline mode.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(self, client: Optional[AsyncClient], logger: StructuredLogger) -> None:
        self._client: Optional[AsyncClient] = client
        self._logger: StructuredLogger = logger

    @classmethod
    async def connect(
        cls,
        supabase_url: str,
        supabase_key: str,
        logger: StructuredLogger,
    ) -> "SupabaseIdentityProvider":
        """Create the async Supabase client, falling back to offline mode."""
        client: Optional[AsyncClient] = None
        if supabase_url and supabase_key:
            try:
                client = await acreate_client(supabase_url, supabase_key)
                logger.info("Supabase client initialized.")
            except (ValueError, TypeError) as exc:
                logger.warning(
                    "Supabase credential format error: %s. Running in offline mode.",
                    exc,
                )
            except Exception as exc:
                logger.error(
                    "Unexpected Supabase initialization failure: %s. "
                    "Running in offline mode.",
                    exc,
                    exc_info=True,
                )
        else:
            logger.warning(
                "Supabase credentials not configured; running in offline mode."
            )
        return cls(client, logger)

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def client(self) -> AsyncClient:
        """Return the initialised Supabase client.

        Raises
        ------
        IdentityProviderOfflineError
            If the client was not initialised (offline mode).
        """
        if self._client is None:
            raise IdentityProviderOfflineError(
                "Supabase client is not initialised. "
                "The application is running in offline mode."
            )
        return self._client

    @property
    def is_online(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def get_session(self) -> IdPResult[Optional[AuthSession]]:
        async def _op() -> Optional[AuthSession]:
            return self.to_session(await self.client.auth.get_session())

        return await self._call("get_session", _op)

    def on_auth_state_change(self, callback: AuthStateCallback) -> Subscription:
        if self._client is None:
            return _InertSubscription()

        def _relay(event: str, session: object) -> None:
            try:
                kind = AuthEvent(event)
            except ValueError:
                self._logger.debug("Ignoring unknown auth event %r.", event)
                return
            callback(kind, self.to_session(session))

        return self._client.auth.on_auth_state_change(_relay)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def sign_in_with_password(self, email: str, password: str) -> IdPResult[None]:
        async def _op() -> None:
            await self.client.auth.sign_in_with_password(
                {"email": email, "password": password},
            )

        return await self._call("sign_in_with_password", _op)

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any],
        redirect_url: str,
    ) -> IdPResult[SignUpData]:
        async def _op() -> SignUpData:
            response = await self.client.auth.sign_up({
                "email": email,
                "password": password,
                "options": {
                    "data": metadata,
                    "email_redirect_to": redirect_url,
                },
            })
            user = response.user
            signup_user: Optional[SignUpUser] = None
            if user is not None:
                identities = getattr(user, "identities", None)
                signup_user = SignUpUser(
                    id=user.id,
                    email=user.email or "",
                    identities=(
                        None if identities is None
                        else [_as_dict(identity) for identity in identities]
                    ),
                )
            return SignUpData(user=signup_user, session=self.to_session(response.session))

        return await self._call("sign_up", _op)

    async def request_password_reset(self, email: str, redirect_url: str) -> IdPResult[None]:
        async def _op() -> None:
            await self.client.auth.reset_password_for_email(
                email, {"redirect_to": redirect_url},
            )

        return await self._call("request_password_reset", _op)

    async def verify_recovery_code(self, email: str, token: str) -> IdPResult[None]:
        async def _op() -> None:
            await self.client.auth.verify_otp(
                {"email": email, "token": token, "type": "recovery"},
            )

        return await self._call("verify_recovery_code", _op)

    async def update_password(self, password: str) -> IdPResult[None]:
        async def _op() -> None:
            await self.client.auth.update_user({"password": password})

        return await self._call("update_password", _op)

    async def sign_out(self) -> IdPResult[None]:
        async def _op() -> None:
            await self.client.auth.sign_out()

        return await self._call("sign_out", _op)

    # ------------------------------------------------------------------
    # Row store
    # ------------------------------------------------------------------

    async def get_profile(self, user_id: str) -> IdPResult[Optional[Profile]]:
        async def _op() -> Optional[Profile]:
            response = await (
                self.client.table(PROFILES_TABLE)
                .select("full_name")
                .eq("id", user_id)
                .maybe_single()
                .execute()
            )
            # postgrest returns ``None`` rather than an empty response
            # from ``maybe_single()`` on recent versions.
            if response is None or not response.data:
                return None
            return Profile(**response.data)

        return await self._call(f"get_profile ({PROFILES_TABLE})", _op)

    async def insert_activity(self, row: dict[str, Any]) -> IdPResult[None]:
        async def _op() -> None:
            await self.client.table(ACTIVITY_TABLE).insert([row]).execute()

        return await self._call(f"insert ({ACTIVITY_TABLE})", _op)

    # ------------------------------------------------------------------
    # Conversion helpers
    # ------------------------------------------------------------------

    @staticmethod
    def to_session(session: object) -> Optional[AuthSession]:
        """Convert a Supabase ``Session`` to ``AuthSession`` (``None`` safe)."""
        if session is None:
            return None
        user = getattr(session, "user", None)
        if user is None or not getattr(user, "id", None):
            return None
        return AuthSession(
            user=SessionUser(
                id=user.id,
                email=getattr(user, "email", None) or "",
                metadata=dict(getattr(user, "user_metadata", None) or {}),
            ),
        )

    @staticmethod
    def to_idp_error(exc: BaseException) -> IdPError:
        """Map a Supabase client or transport exception to ``IdPError``."""
        if isinstance(exc, IdentityProviderOfflineError):
            return IdPError(kind=ErrorKind.NETWORK, message=str(exc))

        if isinstance(exc, AuthRetryableError):
            return IdPError(
                kind=ErrorKind.NETWORK,
                message=getattr(exc, "message", "") or str(exc),
                status=getattr(exc, "status", None) or None,
            )

        if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
            return IdPError(kind=ErrorKind.NETWORK, message=str(exc) or type(exc).__name__)

        if isinstance(exc, (AuthApiError, AuthError)):
            status: Optional[int] = getattr(exc, "status", None)
            return IdPError(
                kind=ErrorKind.RATE_LIMIT if status == 429 else ErrorKind.AUTH,
                message=getattr(exc, "message", "") or str(exc),
                status=status,
                code=getattr(exc, "code", None),
            )

        return IdPError(
            kind=ErrorKind.UNKNOWN,
            message=getattr(exc, "message", "") or str(exc),
            code=getattr(exc, "code", None),
        )

    async def _call(
        self,
        operation_name: str,
        op: Callable[[], Awaitable[T]],
    ) -> IdPResult[T]:
        try:
            return IdPResult(data=await op())
        except Exception as exc:
            error = self.to_idp_error(exc)
            self._logger.warning(
                "IdP operation %s failed (%s): %s",
                operation_name,
                error.kind,
                error.message,
                extra={"event": "IDP_ERROR", "operation": operation_name},
            )
            return IdPResult(error=error)
