from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import psycopg
import pytest

ROOT = Path(__file__).resolve().parents[2]
sys.path.append(str(ROOT))

import backend.db as db_module
from backend.db import Database
from pipeline.errors import StoreError


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeCursor:
    def __init__(self, rows, fail=None) -> None:
        self.rows = list(rows)
        self.fail = fail
        self.executed: list[tuple[str, object]] = []
        self.rowcount = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None

    def execute(self, sql, params=None) -> None:
        if self.fail is not None:
            raise self.fail
        self.executed.append((" ".join(sql.split()), params))

    def fetchone(self):
        return self.rows.pop(0) if self.rows else None

    def fetchall(self):
        rows, self.rows = self.rows, []
        return rows


class FakeConnection:
    def __init__(self, cursor: FakeCursor) -> None:
        self._cursor = cursor

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None

    def cursor(self) -> FakeCursor:
        return self._cursor


class RecordingDatabase(Database):
    def __init__(self, rows=(), fail=None) -> None:
        super().__init__(dsn="postgresql://test")
        object.__setattr__(self, "cursor", FakeCursor(rows, fail))

    def connect(self):
        return FakeConnection(self.cursor)


def test_claim_is_a_single_conditional_upsert():
    row = {
        "search_term": "python",
        "learning_goal": "beginner",
        "lease_id": "lease-1",
        "acquired_at": T0,
        "took_over_stale": False,
    }
    db = RecordingDatabase(rows=[row])
    stale_before = T0 - timedelta(seconds=900)

    result = db.claim_generation_lock("python", "beginner", "lease-1", T0, stale_before)

    assert result == row
    assert len(db.cursor.executed) == 1
    sql, params = db.cursor.executed[0]
    assert "insert into generation_locks (search_term, learning_goal, lease_id, acquired_at)" in sql
    assert "on conflict (search_term, learning_goal) do update set" in sql
    assert "where generation_locks.acquired_at < %(stale_before)s" in sql
    assert "(xmax::text <> '0') as took_over_stale" in sql
    assert params == {
        "search_term": "python",
        "learning_goal": "beginner",
        "lease_id": "lease-1",
        "acquired_at": T0,
        "stale_before": stale_before,
    }


def test_claim_reads_current_holder_when_upsert_is_skipped():
    holder = {"search_term": "python", "learning_goal": "beginner", "lease_id": "other", "acquired_at": T0}
    db = RecordingDatabase(rows=[None, holder])

    result = db.claim_generation_lock("python", "beginner", "lease-2", T0, T0 - timedelta(seconds=900))

    assert result == holder
    assert len(db.cursor.executed) == 2
    assert db.cursor.executed[1][0].startswith("select search_term, learning_goal, lease_id, acquired_at")


def test_renew_matches_on_lease_id():
    db = RecordingDatabase(rows=[])

    assert db.renew_generation_lock("python", "beginner", "lease-1", T0) is None

    sql, params = db.cursor.executed[0]
    assert sql.startswith("update generation_locks set acquired_at = %(acquired_at)s")
    assert "and lease_id = %(lease_id)s" in sql
    assert params["lease_id"] == "lease-1"


def test_release_without_lease_id_deletes_by_key_only():
    db = RecordingDatabase()

    db.delete_generation_lock("python", "beginner")
    db.delete_generation_lock("python", "beginner", "lease-1")

    assert "lease_id" not in db.cursor.executed[0][0]
    assert db.cursor.executed[1][0].endswith("and lease_id = %(lease_id)s;")


@pytest.mark.parametrize(
    "call",
    [
        lambda db: db.migrate(),
        lambda db: db.fetch_stale_generation_locks(T0),
        lambda db: db.fetch_generation_log("log-1"),
        lambda db: db.fetch_generation_logs("python", "beginner", 5),
        lambda db: db.count_generation_logs_by_status(),
        lambda db: db.claim_generation_lock("python", "beginner", "lease-1", T0, T0),
    ],
)
def test_driver_errors_surface_as_store_errors(call):
    db = RecordingDatabase(fail=psycopg.OperationalError("connection refused"))

    with pytest.raises(StoreError, match="connection refused"):
        call(db)


def test_get_database_requires_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)

    with pytest.raises(StoreError, match="DATABASE_URL must be set"):
        db_module.get_database()
