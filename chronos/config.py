"""
Identity Core Configuration.

``AppConfig`` reads Supabase credentials, session and auth-flow limits, and
logging options from the environment or a ``.env`` file.  Components take
the individual values through their constructors; only the entry point and
``StructuredLogger`` defaults call ``get_config()``.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import Field, SecretStr, model_validator


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Supabase ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")

    # Where confirmation and recovery e-mails send the user back to.
    AUTH_REDIRECT_URL: str = "http://localhost:3000"

    # --- Session lifecycle ---
    SESSION_SAFETY_TIMEOUT_S: float = Field(default=3.0, gt=0)

    # --- Auth flow ---
    AUTH_COOLDOWN_S: int = Field(default=60, ge=0)
    MIN_PASSWORD_LENGTH: int = 6
    MIN_FULL_NAME_LENGTH: int = 2
    RECOVERY_CODE_LENGTH: int = 6

    # --- Activity logging ---
    MIN_LOGGED_DURATION_MS: int = 1000

    # --- Logging ---
    LOG_FILE: str = "chronos.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when critical configuration is empty.

        Pydantic silently falls back to defaults when ``.env`` is missing,
        so operators would otherwise not notice that the identity provider
        is unreachable until the first sign-in attempt.
        """
        _log = logging.getLogger("chronos.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        if not self.SUPABASE_URL or not self.SUPABASE_ANON_KEY.get_secret_value():
            _log.warning(
                "SUPABASE_URL or SUPABASE_ANON_KEY is empty; the identity "
                "provider is disabled and every user stays logged out."
            )

        return self

    @property
    def redirect_url(self) -> str:
        """``AUTH_REDIRECT_URL`` without a trailing slash."""
        return self.AUTH_REDIRECT_URL.rstrip("/")

    @property
    def has_supabase_credentials(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_ANON_KEY.get_secret_value())


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    On first call, creates an ``AppConfig`` instance (reading from ``.env``).
    Subsequent calls return the same instance.

    Prefer direct constructor injection of ``AppConfig``; this factory
    exists for the entry point and for ``StructuredLogger`` defaults.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
