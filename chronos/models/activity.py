"""
Activity Log Model.

Row written to the ``timer_logs`` table each time a timer session ends.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

# ``timer_logs`` has no metadata column; metadata rides inside ``category``.
META_SEPARATOR: str = "|META:"


def encode_category(category: str, metadata: Optional[dict[str, Any]]) -> str:
    """Return *category* with *metadata* appended as searchable JSON."""
    if not metadata:
        return category
    return f"{category}{META_SEPARATOR}{json.dumps(metadata, separators=(',', ':'))}"


class ActivityLog(BaseModel):
    """A single persisted timer session."""

    user_id: str = Field(min_length=1)
    timer_type: str
    duration_ms: int = Field(ge=0)
    category: str = "General"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_row(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "timer_type": self.timer_type,
            "duration_ms": self.duration_ms,
            "category": self.category,
            "created_at": self.created_at.isoformat(),
        }
