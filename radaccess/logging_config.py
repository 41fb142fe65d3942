"""Structured logging configuration for radaccess.

Environment variables:
    RA_LOG_FORMAT  -- ``json`` for structured JSON output, ``text`` for human-readable (default).
    RA_LOG_LEVEL   -- Python log level name (default: ``INFO``).

Access-control denials and account mutations are written to the
``radaccess.audit`` logger with ``event_category="audit"`` in the extras.
"""

from __future__ import annotations

import logging
import os
import traceback
from typing import Any

from radaccess.config import settings

#: Domain fields lifted from ``extra=`` into the JSON object.
STRUCTURED_FIELDS: tuple[str, ...] = (
    "event_category",
    "action",
    "actor_id",
    "target_id",
    "role",
    "target_role",
    "organization_identifier",
    "reason",
)


def _is_json_mode() -> bool:
    """Return True when structured JSON logging is requested."""
    return os.environ.get("RA_LOG_FORMAT", settings.log_format).lower() == "json"


def _get_log_level() -> int:
    """Return the numeric log level from RA_LOG_LEVEL (default INFO)."""
    name = os.environ.get("RA_LOG_LEVEL", settings.log_level).upper()
    numeric = getattr(logging, name, None)
    if not isinstance(numeric, int):
        return logging.INFO
    return numeric


class StructuredJsonFormatter(logging.Formatter):
    """JSON formatter that emits one JSON object per log line.

    Uses ``pythonjsonlogger`` under the hood and makes sure the radaccess
    audit fields (actor_id, target_id, role, ...) are present on the
    record when the caller supplied them.
    """

    def __init__(self) -> None:
        super().__init__()
        from pythonjsonlogger.json import JsonFormatter

        self._inner = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        extras: dict[str, Any] = {}
        for key in STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                extras[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            extras["traceback"] = traceback.format_exception(*record.exc_info)
            record.exc_info = None
            record.exc_text = None

        for k, v in extras.items():
            setattr(record, k, v)

        return self._inner.format(record)


def setup_logging() -> None:
    """Configure the root logger according to RA_LOG_FORMAT and RA_LOG_LEVEL."""
    level = _get_log_level()
    root = logging.getLogger()
    root.setLevel(level)

    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setLevel(level)

    if _is_json_mode():
        handler.setFormatter(StructuredJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))

    root.addHandler(handler)


def log_startup_info() -> None:
    """Emit a structured startup log line with the active configuration."""
    import radaccess

    logger = logging.getLogger("radaccess")
    logger.info(
        "radaccess initialised",
        extra={
            "version": radaccess.__version__,
            "db_path": os.environ.get("RA_DB_PATH", settings.db_path),
            "log_format": "json" if _is_json_mode() else "text",
        },
    )
