"""
Activity Usage Service.

Persists finished timer sessions to the ``timer_logs`` table for the user
currently signed in.  Reads the canonical user from ``SessionController``
and never writes it.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import ValidationError

from chronos.identity_provider import IdentityProvider
from chronos.logger import StructuredLogger
from chronos.models.activity import ActivityLog, encode_category
from chronos.services.base_service import BaseService
from chronos.services.session_controller import SessionController


class ActivityService(BaseService):
    """Records timer usage rows.

    Parameters
    ----------
    idp:
        Identity provider adapter; owns the row-store insert.
    session:
        Source of the current user.
    logger:
        Structured JSON logger.
    min_duration_ms:
        Sessions at or below this length are not recorded.
    """

    def __init__(
        self,
        idp: IdentityProvider,
        session: SessionController,
        logger: StructuredLogger,
        min_duration_ms: int = 1000,
    ) -> None:
        super().__init__(logger)
        self._idp: IdentityProvider = idp
        self._session: SessionController = session
        self._min_duration_ms: int = min_duration_ms

    async def record_usage(
        self,
        timer_type: str,
        duration_ms: int,
        category: str = "General",
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[ActivityLog]:
        """Insert one usage row; returns it, or ``None`` when skipped or failed."""
        user = self._session.user
        if not user.is_logged_in:
            self._logger.warning(
                "Skipping %s usage log: no user signed in.", timer_type,
                extra={"event": "ACTIVITY_SKIPPED"},
            )
            return None

        if duration_ms <= self._min_duration_ms:
            self._logger.debug(
                "Skipping %s usage log: %dms is below the %dms minimum.",
                timer_type, duration_ms, self._min_duration_ms,
            )
            return None

        try:
            log = ActivityLog(
                user_id=user.id,
                timer_type=timer_type,
                duration_ms=duration_ms,
                category=encode_category(category, metadata),
            )
        except (ValidationError, TypeError, ValueError) as exc:
            self._logger.error(
                "Invalid usage row for %s: %s", user.id, exc,
                extra={"event": "ACTIVITY_FAILED", "user_id": user.id},
            )
            return None

        try:
            result = await self._idp.insert_activity(log.to_row())
        except Exception as exc:
            self._logger.error(
                "Usage insert raised for %s: %s", user.id, exc,
                exc_info=True,
                extra={"event": "ACTIVITY_FAILED", "user_id": user.id},
            )
            return None

        if not result.ok:
            self._logger.error(
                "Usage insert failed for %s: %s",
                user.id,
                result.error.message if result.error else "",
                extra={"event": "ACTIVITY_FAILED", "user_id": user.id},
            )
            return None

        self._logger.info(
            "Logged %s usage: %dms (%s).", timer_type, duration_ms, category,
            extra={"event": "ACTIVITY_LOGGED", "user_id": user.id},
        )
        return log
