"""
JSON Logging for the Identity Core.

Every record is written as one JSON object per line.  The ``event`` and
``user_id`` fields passed through ``extra`` are promoted to top-level keys so
the audit trail can be filtered without parsing nested context; anything
else lands under ``context``.  Values whose key names a credential are
replaced with ``***`` before they reach any handler.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, TextIO

# ``extra`` keys whose values must never reach a log sink.
_REDACTED_KEYS: frozenset[str] = frozenset({
    "password",
    "token",
    "otp",
    "access_token",
    "refresh_token",
    "api_key",
})
_REDACTED: str = "***"

_PROMOTED_KEYS: tuple[str, ...] = ("event", "user_id")

# Attributes every LogRecord carries; anything else came from ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.makeLogRecord({})).keys()
) | {"message", "asctime", "taskName"}


def _scrub(key: str, value: object) -> str:
    return _REDACTED if key.lower() in _REDACTED_KEYS else str(value)


class JSONFormatter(logging.Formatter):
    """Render a record as ``{"timestamp", "level", "logger", "message", ...}``.

    Optional keys: ``event``, ``user_id``, ``context`` (remaining ``extra``
    fields) and ``exception`` (formatted traceback).
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context: dict[str, str] = {}
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS:
                continue
            if key in _PROMOTED_KEYS:
                entry[key] = _scrub(key, value)
            else:
                context[key] = _scrub(key, value)
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False)


def _build_file_handler(
    log_file: str,
    max_bytes: int,
    backup_count: int,
) -> RotatingFileHandler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        filename=str(path),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )


class StructuredLogger:
    """Injectable wrapper around a named ``logging.Logger``.

    Handlers are attached once per logger name, so constructing several
    ``StructuredLogger`` objects for the same name is cheap and does not
    duplicate output.

    Parameters
    ----------
    name:
        Logger name (``"session"``, ``"auth_flow"``, ...).
    level:
        Minimum level for the logger and its handlers.
    stream:
        Console stream; ``sys.stdout`` when omitted.
    log_file:
        Rotating log file.  ``None`` uses ``LOG_FILE`` from the config;
        ``""`` disables file output (tests, read-only installs).
    max_bytes, backup_count:
        Rotation limits; default to the config values.

    Usage::

        log = StructuredLogger(name="session", log_file="")
        log.info("Session restored", extra={"event": "LOGIN", "user_id": user.id})
    """

    def __init__(
        self,
        name: str = "chronos",
        level: int = logging.INFO,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(level)
        if self._logger.handlers:
            return

        # Imported here: config itself logs through the stdlib at import time.
        from chronos.config import get_config
        cfg = get_config()

        formatter = JSONFormatter()
        console = logging.StreamHandler(stream or sys.stdout)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        target = cfg.LOG_FILE if log_file is None else log_file
        if not target:
            return
        try:
            file_handler = _build_file_handler(
                target,
                max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
                backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
            )
        except OSError as exc:
            self._logger.warning(
                "Could not open log file '%s' (%s); logging to console only.",
                target,
                exc,
            )
            return
        file_handler.setFormatter(formatter)
        self._logger.addHandler(file_handler)

    @property
    def logger(self) -> logging.Logger:
        """The wrapped ``logging.Logger``."""
        return self._logger

    def debug(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.critical(msg, *args, **kwargs)


def get_logger(name: str = "chronos") -> StructuredLogger:
    """Return a ``StructuredLogger`` for *name* using config defaults."""
    return StructuredLogger(name=name)
