"""
Session Controller.

Single source of truth for "who is signed in".  Owns the canonical ``User``
and the ``loading`` flag for the whole application and is their only
writer; every other component reads them through properties or listener
callbacks.

Inputs arrive asynchronously and in any order: the one-shot
``get_session()`` query issued at startup, the provider's auth-event
stream, and the side effects of ``AuthFlowController`` calls.  Ordering is
enforced by a generation counter rather than a lock (there is no real
parallelism on the event loop, only interleaving): each merge captures the
generation valid at dispatch time and is applied only if that generation
is still current when the awaited work completes.

Usage::

    controller = SessionController(idp=idp, profile_resolver=resolver, logger=log)
    controller.initialize()          # inside a running event loop
    await controller.wait_until_ready()
    ...
    controller.logout()              # user is cleared immediately
    controller.teardown()
"""

from __future__ import annotations

import asyncio
from typing import Callable, Coroutine, Optional

from chronos.identity_provider import IdentityProvider, Subscription
from chronos.logger import StructuredLogger
from chronos.models.auth_models import AuthSession, IdPError, IdPResult
from chronos.models.enums import AuthEvent, ErrorKind
from chronos.models.user import User
from chronos.services.base_service import BaseService
from chronos.services.profile_resolver import ProfileResolver
from chronos.utils.audit import AuditAction

UserListener = Callable[[User], None]
Hook = Callable[[], None]

DEFAULT_SAFETY_TIMEOUT_S: float = 3.0


class SessionController(BaseService):
    """Owns the canonical ``User`` and reconciles it with the provider.

    Parameters
    ----------
    idp:
        Identity provider adapter (Supabase in production).
    profile_resolver:
        Resolves display names for session users.
    logger:
        Structured JSON logger.
    safety_timeout_s:
        Upper bound on how long ``loading`` may stay ``True`` when the
        provider does not answer.  Advisory: it does not abort the
        underlying request.
    """

    def __init__(
        self,
        idp: IdentityProvider,
        profile_resolver: ProfileResolver,
        logger: StructuredLogger,
        safety_timeout_s: float = DEFAULT_SAFETY_TIMEOUT_S,
    ) -> None:
        super().__init__(logger)
        self._idp: IdentityProvider = idp
        self._resolver: ProfileResolver = profile_resolver
        self._safety_timeout_s: float = safety_timeout_s

        self._user: User = User.empty()
        self._loading: bool = True
        self._ready: asyncio.Event = asyncio.Event()
        self._generation: int = 0
        self._mounted: bool = False
        self._initialized: bool = False
        # Set by ``logout()``; cleared when the provider confirms the
        # sign-out or a fresh sign-in arrives.
        self._logged_out_locally: bool = False

        self._subscription: Optional[Subscription] = None
        self._safety_timer: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task[None]] = set()

        self._listeners: list[UserListener] = []
        self._sign_out_hooks: list[Hook] = []
        self._recovery_hooks: list[Hook] = []

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def user(self) -> User:
        return self._user

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_mounted(self) -> bool:
        return self._mounted

    async def wait_until_ready(self) -> None:
        """Block until ``loading`` clears (session known or timeout)."""
        await self._ready.wait()

    # ------------------------------------------------------------------
    # Consumer registration
    # ------------------------------------------------------------------

    def subscribe(self, listener: UserListener) -> Callable[[], None]:
        """Call *listener* with the new ``User`` after every change."""
        self._listeners.append(listener)
        return lambda: self._remove(self._listeners, listener)

    def on_signed_out(self, hook: Hook) -> Callable[[], None]:
        """Run *hook* whenever the session ends (clears collaborator state)."""
        self._sign_out_hooks.append(hook)
        return lambda: self._remove(self._sign_out_hooks, hook)

    def on_recovery_requested(self, hook: Hook) -> Callable[[], None]:
        """Run *hook* when the provider reports a password-recovery session."""
        self._recovery_hooks.append(hook)
        return lambda: self._remove(self._recovery_hooks, hook)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Start the initial session query and the event subscription.

        Must be called from inside a running event loop.  Calling it again
        before ``teardown()`` is a no-op.
        """
        if self._initialized:
            return
        loop = asyncio.get_running_loop()
        self._initialized = True
        self._mounted = True
        if self._loading:
            self._ready.clear()

        self._safety_timer = loop.call_later(self._safety_timeout_s, self._on_safety_timeout)
        self._subscription = self._idp.on_auth_state_change(self._on_idp_event)
        self._spawn(self._load_initial_session(self._generation), "initial-session")

        self._logger.info(
            "Session controller initialized (safety timeout %.1fs).",
            self._safety_timeout_s,
        )

    def teardown(self) -> None:
        """Unsubscribe and invalidate every in-flight completion."""
        self._mounted = False
        self._initialized = False
        self._generation += 1
        self._cancel_safety_timer()
        # Nothing will clear loading after this point.
        self._ready.set()

        if self._subscription is not None:
            try:
                self._subscription.unsubscribe()
            except Exception as exc:
                self._logger.warning("Auth subscription unsubscribe failed: %s", exc)
            self._subscription = None

        self._logger.info("Session controller torn down.")

    # ------------------------------------------------------------------
    # Merge point
    # ------------------------------------------------------------------

    async def handle_auth_event(
        self,
        event: AuthEvent,
        session: Optional[AuthSession],
    ) -> None:
        """Reconcile the canonical user with a provider event."""
        if not self._mounted:
            self._logger.debug("Ignoring %s received after teardown.", event)
            return

        if event == AuthEvent.PASSWORD_RECOVERY:
            # A recovery session only authorises a password change; the
            # user is not considered signed in until it is updated.
            self._logger.info(
                "Password recovery requested by the identity provider.",
                extra={"event": "PASSWORD_RECOVERY"},
            )
            # Proving the recovery code is a fresh credential; the session
            # that follows the password update must not be ignored.
            self._logged_out_locally = False
            self._run_hooks(self._recovery_hooks, "recovery")
            self._mark_ready()
            return

        if session is not None and not session.user.email:
            self._logger.warning(
                "Session for %s carries no email; treating as signed out.",
                session.user.id,
            )
            session = None

        if session is None:
            if event == AuthEvent.SIGNED_OUT:
                self._logged_out_locally = False
            self._apply_signed_out()
            self._mark_ready()
            return

        if self._logged_out_locally and event != AuthEvent.SIGNED_IN:
            self._logger.info(
                "Ignoring %s for %s after local logout.",
                event,
                session.user.id,
                extra={"event": "STALE_SESSION_EVENT", "user_id": session.user.id},
            )
            return

        self._logged_out_locally = False
        await self._apply_session(session, event)

    def logout(self) -> asyncio.Task[None]:
        """Sign out optimistically.

        The canonical user is reset before this method returns; the
        provider sign-out runs in the background and its outcome never
        changes local state.  Returns the background task.
        """
        previous = self._user
        self._logged_out_locally = True
        self._apply_signed_out()
        self._mark_ready()
        self._audit(AuditAction.LOGOUT, previous.id, {"email": previous.email})
        return self._spawn(self._sign_out_remote(previous), "sign-out")

    # ------------------------------------------------------------------
    # Internal: async paths
    # ------------------------------------------------------------------

    def _on_idp_event(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        if not self._mounted:
            return
        self._spawn(self.handle_auth_event(event, session), f"auth-event-{event}")

    async def _load_initial_session(self, generation: int) -> None:
        try:
            result = await self._idp.get_session()
        except Exception as exc:
            self._logger.error(
                "Initial session check raised: %s", exc,
                exc_info=True,
                extra={"event": "SESSION_INIT_FAILED"},
            )
            result = IdPResult(error=IdPError(kind=ErrorKind.UNKNOWN, message=str(exc)))

        if not self._mounted or generation != self._generation:
            self._logger.debug("Discarding superseded initial session result.")
            return

        session: Optional[AuthSession] = None
        if not result.ok:
            self._logger.warning(
                "Initial session check failed (%s); continuing logged out.",
                result.error.message if result.error else "",
                extra={"event": "SESSION_INIT_FAILED"},
            )
        else:
            session = result.data

        if session is None or not session.user.email:
            self._mark_ready()
            return

        await self._apply_session(session, AuthEvent.INITIAL_SESSION)

    async def _apply_session(self, session: AuthSession, event: AuthEvent) -> None:
        self._generation += 1
        generation = self._generation
        session_user = session.user
        already_signed_in = self._user.is_logged_in and self._user.id == session_user.id

        self._set_user(User(
            id=session_user.id,
            name=self._resolver.provisional_name(session_user, held=self._user),
            email=session_user.email,
            is_logged_in=True,
        ))
        self._mark_ready()
        if not already_signed_in:
            self._audit(
                AuditAction.LOGIN,
                session_user.id,
                {"email": session_user.email, "source": str(event)},
            )

        name = await self._resolver.resolve(session_user)

        if not self._is_current(generation, session_user.id):
            self._logger.debug(
                "Discarding stale profile for %s (generation %d, now %d).",
                session_user.id,
                generation,
                self._generation,
            )
            return
        if name and name != self._user.name:
            self._set_user(self._user.model_copy(update={"name": name}))

    async def _sign_out_remote(self, previous: User) -> None:
        try:
            result = await self._idp.sign_out()
        except Exception as exc:
            self._logger.error(
                "Remote sign-out raised for %s: %s", previous.email or "anonymous", exc,
                exc_info=True,
                extra={"event": "SIGN_OUT_FAILED"},
            )
            return
        if not result.ok:
            self._logger.warning(
                "Remote sign-out failed for %s: %s",
                previous.email or "anonymous",
                result.error.message if result.error else "",
                extra={"event": "SIGN_OUT_FAILED"},
            )

    # ------------------------------------------------------------------
    # Internal: state helpers
    # ------------------------------------------------------------------

    def _apply_signed_out(self) -> None:
        self._generation += 1
        self._resolver.forget()
        if self._user != User.empty():
            self._set_user(User.empty())
        self._run_hooks(self._sign_out_hooks, "sign-out")

    def _is_current(self, generation: int, user_id: str) -> bool:
        return (
            self._mounted
            and generation == self._generation
            and self._user.id == user_id
        )

    def _set_user(self, user: User) -> None:
        self._user = user
        for listener in list(self._listeners):
            try:
                listener(user)
            except Exception as exc:
                self._logger.error("User listener failed: %s", exc, exc_info=True)

    def _run_hooks(self, hooks: list[Hook], label: str) -> None:
        for hook in list(hooks):
            try:
                hook()
            except Exception as exc:
                self._logger.error("%s hook failed: %s", label, exc, exc_info=True)

    def _mark_ready(self) -> None:
        self._cancel_safety_timer()
        if self._loading:
            self._loading = False
            self._ready.set()

    def _on_safety_timeout(self) -> None:
        self._safety_timer = None
        if self._loading and self._mounted:
            self._logger.warning(
                "Identity provider did not answer within %.1fs; continuing.",
                self._safety_timeout_s,
                extra={"event": "SESSION_INIT_TIMEOUT"},
            )
            self._mark_ready()

    def _cancel_safety_timer(self) -> None:
        if self._safety_timer is not None:
            self._safety_timer.cancel()
            self._safety_timer = None

    def _spawn(self, coro: Coroutine[object, object, None], name: str) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error(
                "Background task %s failed: %s", task.get_name(), exc, exc_info=exc,
            )

    @staticmethod
    def _remove(items: list, item: object) -> None:
        if item in items:
            items.remove(item)
