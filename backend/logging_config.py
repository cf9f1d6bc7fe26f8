"""Structured JSON logging for the API and the worker.

Each record becomes one JSON object per stdout line, so log collectors can
filter on fields such as ``search_term`` or ``log_id`` instead of parsing text.

Usage::

    from backend.logging_config import configure_logging
    configure_logging()
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Optional

# Fields that generation/request code passes via ``extra={}`` on log calls.
_KNOWN_EXTRA_FIELDS = (
    "search_term",
    "learning_goal",
    "log_id",
    "lease_id",
    "status",
    "error",
    "request_id",
    "mode",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "query",
    "result_count",
    "video_id",
    "videos_generated",
    "quizzes_generated",
    "degraded_videos",
    "operation",
    "attempt",
    "max_attempts",
    "delay_sec",
    "provider",
    "model",
    "minutes_elapsed",
)

_LEVEL_TO_SEVERITY = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARNING",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "CRITICAL",
}


class JsonLineFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "severity": _LEVEL_TO_SEVERITY.get(record.levelno, "DEFAULT"),
            "message": record.getMessage(),
            "logger": record.name,
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
        }

        for field in _KNOWN_EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info and record.levelno >= logging.ERROR:
            payload["stack_trace"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str)


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.getenv("LH_LOG_LEVEL", "INFO")).strip().upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: Optional[str] = None) -> None:
    """Install the JSON formatter on the root logger.

    Safe to call multiple times: existing handlers are cleared first.
    """
    root = logging.getLogger()
    root.setLevel(_resolve_level(level))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonLineFormatter())
    root.addHandler(handler)
