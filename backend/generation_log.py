from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from pipeline.normalize import TopicPairKey


LOGGER = logging.getLogger("learnhub.generation_log")

STARTED = "started"
IN_PROGRESS = "in_progress"
SUCCESS = "success"
FAILED = "failed"

LOG_STATUSES = {STARTED, IN_PROGRESS, SUCCESS, FAILED}
TERMINAL_STATUSES = {SUCCESS, FAILED}


class GenerationLogStore(Protocol):
    def create_generation_log(self, payload: Dict[str, Any]) -> None: ...

    def update_generation_log(self, log_id: str, **fields: Any) -> None: ...

    def fetch_generation_log(self, log_id: str) -> Optional[Dict[str, Any]]: ...


class InMemoryGenerationLogStore:
    def __init__(self) -> None:
        self._rows: dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def create_generation_log(self, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._rows[payload["id"]] = dict(payload)

    def update_generation_log(self, log_id: str, **fields: Any) -> None:
        with self._lock:
            row = self._rows.get(log_id)
            if row is None:
                return
            row.update({name: value for name, value in fields.items() if value is not None})

    def fetch_generation_log(self, log_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._rows.get(log_id)
            return dict(row) if row else None

    def fetch_generation_logs(self, search_term: str, learning_goal: str, limit: Optional[int] = None) -> list[Dict[str, Any]]:
        with self._lock:
            rows = [
                dict(row)
                for row in self._rows.values()
                if row["search_term"] == search_term and row["learning_goal"] == learning_goal
            ]
        rows.sort(key=lambda row: row["started_at"], reverse=True)
        return rows[:limit] if limit is not None else rows


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GenerationLog:
    """Audit trail of generation attempts, written alongside the lock lifecycle.

    Only status reporting reads it back; whether a run may start is decided by
    the generation lock alone.
    """

    def __init__(self, store: GenerationLogStore) -> None:
        self._store = store

    def start(self, key: TopicPairKey, started_at: Optional[datetime] = None) -> str:
        log_id = str(uuid.uuid4())
        self._store.create_generation_log(
            {
                "id": log_id,
                "search_term": key.search_term,
                "learning_goal": key.learning_goal,
                "status": STARTED,
                "started_at": started_at or _utc_now(),
                "videos_generated": 0,
                "quizzes_generated": 0,
            }
        )
        LOGGER.info(
            "generation_log.started",
            extra={"log_id": log_id, "search_term": key.search_term, "learning_goal": key.learning_goal},
        )
        return log_id

    def update(
        self,
        log_id: str,
        status: str,
        *,
        videos_generated: Optional[int] = None,
        quizzes_generated: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> None:
        if status not in LOG_STATUSES:
            raise ValueError(f"Unsupported generation log status: {status}")
        self._store.update_generation_log(
            log_id,
            status=status,
            completed_at=_utc_now() if status in TERMINAL_STATUSES else None,
            videos_generated=videos_generated,
            quizzes_generated=quizzes_generated,
            error_message=error_message,
        )
        LOGGER.info(
            "generation_log.updated",
            extra={"log_id": log_id, "status": status, "error": error_message},
        )

    def fetch(self, log_id: str) -> Optional[Dict[str, Any]]:
        return self._store.fetch_generation_log(log_id)

    def recent_for_key(self, key: TopicPairKey, limit: int = 10) -> list[Dict[str, Any]]:
        fetch_logs = getattr(self._store, "fetch_generation_logs", None)
        if not callable(fetch_logs):
            return []
        return fetch_logs(key.search_term, key.learning_goal, limit)


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def log_api_payload(row: Dict[str, Any]) -> dict:
    return {
        "id": row.get("id"),
        "searchTerm": row.get("search_term"),
        "learningGoal": row.get("learning_goal"),
        "status": row.get("status"),
        "startedAt": _iso(row.get("started_at")),
        "completedAt": _iso(row.get("completed_at")),
        "videosGenerated": int(row.get("videos_generated") or 0),
        "quizzesGenerated": int(row.get("quizzes_generated") or 0),
        "errorMessage": row.get("error_message"),
    }
