"""
Base Service Class.

Minimal base class standardizing the logger and audit pattern for all
services.  Services extend this and add their own dependencies via
__init__.
"""

from __future__ import annotations

from typing import Optional

from chronos.logger import StructuredLogger
from chronos.utils.audit import DetailValue, log_audit_event


class BaseService:
    """Base class for all service classes. Provides a logger."""

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger

    def _audit(
        self,
        action: str,
        user_id: str,
        details: Optional[dict[str, DetailValue]] = None,
    ) -> None:
        log_audit_event(
            logger=self._logger,
            action=action,
            user_id=user_id or "anonymous",
            details=details,
        )
