"""
User Model.

The canonical "current user" value owned by ``SessionController``.
A single sentinel value (``User.empty()``) represents the logged-out
state so consumers never have to deal with ``None``.
"""

from __future__ import annotations

from pydantic import BaseModel, model_validator


class User(BaseModel):
    """Represents the signed-in user as seen by the rest of the application.

    Instances are immutable; ``SessionController`` replaces the whole value
    on every change so listeners can compare old and new snapshots.
    """

    id: str = ""  # Supabase UUID
    name: str = ""
    email: str = ""
    is_logged_in: bool = False

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _logged_in_requires_identity(self) -> "User":
        if self.is_logged_in and (not self.id or not self.email):
            raise ValueError("A logged-in user must carry both an id and an email.")
        return self

    @classmethod
    def empty(cls) -> "User":
        """Return the logged-out sentinel."""
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.is_logged_in and not self.id
