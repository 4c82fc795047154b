"""
Profile Resolver.

Produces the display name for a session user in two stages:

- ``provisional_name()``: synchronous best guess used for the optimistic
  update (name already held for the same id, then sign-up metadata, then
  the local part of the e-mail address).
- ``resolve()``: authoritative name.  Metadata wins without a query;
  otherwise the ``profiles`` table is consulted at most once per user per
  login.  Concurrent callers share the in-flight lookup.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from chronos.identity_provider import IdentityProvider
from chronos.logger import StructuredLogger
from chronos.models.auth_models import SessionUser
from chronos.models.user import User
from chronos.services.base_service import BaseService


class ProfileResolver(BaseService):
    """Resolves human-readable names for ``SessionController``."""

    def __init__(self, idp: IdentityProvider, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._idp: IdentityProvider = idp
        # user_id -> profile full_name (``None`` when the row has no name)
        self._names: dict[str, Optional[str]] = {}
        self._inflight: dict[str, asyncio.Task[Optional[str]]] = {}
        self._epoch: int = 0

    @staticmethod
    def email_local_part(email: str) -> str:
        return email.split("@", 1)[0] if email else ""

    @classmethod
    def provisional_name(cls, user: SessionUser, held: Optional[User] = None) -> str:
        if held is not None and held.id == user.id and held.name:
            return held.name
        return user.metadata_name or cls.email_local_part(user.email)

    async def resolve(self, user: SessionUser) -> str:
        """Return the authoritative display name for *user*.  Never raises."""
        fallback = self.email_local_part(user.email)
        if user.metadata_name:
            return user.metadata_name

        if user.id in self._names:
            return self._names[user.id] or fallback

        task = self._inflight.get(user.id)
        if task is None:
            task = asyncio.ensure_future(self._fetch(user.id, self._epoch))
            self._inflight[user.id] = task
            task.add_done_callback(
                lambda done, uid=user.id: self._drop_inflight(uid, done)
            )

        # Shielded so one cancelled waiter does not abort a shared lookup.
        full_name = await asyncio.shield(task)
        return full_name or fallback

    def forget(self, user_id: Optional[str] = None) -> None:
        """Drop cached names (all of them when *user_id* is ``None``)."""
        if user_id is None:
            self._names.clear()
            self._epoch += 1
        else:
            self._names.pop(user_id, None)

    def _drop_inflight(self, user_id: str, task: asyncio.Task[Optional[str]]) -> None:
        if self._inflight.get(user_id) is task:
            del self._inflight[user_id]

    async def _fetch(self, user_id: str, epoch: int) -> Optional[str]:
        try:
            result = await self._idp.get_profile(user_id)
        except Exception as exc:
            self._logger.error(
                "Profile lookup raised for %s: %s", user_id, exc,
                exc_info=True,
                extra={"event": "PROFILE_LOOKUP_FAILED", "user_id": user_id},
            )
            return None

        if not result.ok:
            self._logger.warning(
                "Profile lookup failed for %s: %s",
                user_id,
                result.error.message if result.error else "",
                extra={"event": "PROFILE_LOOKUP_FAILED", "user_id": user_id},
            )
            return None

        profile = result.data
        full_name = (
            profile.full_name.strip()
            if profile is not None and profile.full_name and profile.full_name.strip()
            else None
        )
        if epoch == self._epoch:
            self._names[user_id] = full_name
        return full_name
