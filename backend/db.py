from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import psycopg
from psycopg.rows import dict_row

from pipeline.errors import StoreError


_LOG_UPDATE_COLUMNS = (
    "status",
    "completed_at",
    "videos_generated",
    "quizzes_generated",
    "error_message",
)


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except psycopg.Error as exc:
        raise StoreError(f"{operation} failed: {exc}") from exc


@dataclass(frozen=True)
class Database:
    dsn: str

    def connect(self):
        return psycopg.connect(self.dsn, row_factory=dict_row, autocommit=True)

    def healthcheck(self) -> None:
        with self.connect() as conn:
            with conn.cursor() as cur:
                cur.execute("select 1;")
                cur.fetchone()

    def migrate(self) -> None:
        migrations_dir = Path(__file__).resolve().parent / "migrations"
        migrations = sorted(migrations_dir.glob("*.sql"))
        if not migrations:
            return
        with _store_errors("Applying migrations"):
            with self.connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        create table if not exists schema_migrations (
                            id text primary key,
                            applied_at timestamptz not null default now()
                        );
                        """
                    )
                    cur.execute("select id from schema_migrations order by id;")
                    applied = {row["id"] for row in cur.fetchall()}
                    for migration in migrations:
                        migration_id = migration.name
                        if migration_id in applied:
                            continue
                        sql = migration.read_text(encoding="utf-8")
                        cur.execute(sql)
                        cur.execute(
                            "insert into schema_migrations (id) values (%s);",
                            (migration_id,),
                        )

    # Content

    def upsert_learning_content(self, videos: List[Dict[str, Any]], quizzes: List[Dict[str, Any]]) -> None:
        """Write one generation's rows atomically.

        Videos are keyed by (search_term, learning_goal, id) and quizzes by
        (search_term, learning_goal, video_id, question), so a re-run for the
        same key overwrites rather than duplicates.
        """
        if not videos and not quizzes:
            return
        with _store_errors("Persisting learning content"):
            with self.connect() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        if videos:
                            cur.executemany(
                                """
                                insert into videos (
                                    id, search_term, learning_goal, title, url, summary, level,
                                    channel, thumbnail, published_at, rank, score, created_at, updated_at
                                ) values (
                                    %(id)s, %(search_term)s, %(learning_goal)s, %(title)s, %(url)s,
                                    %(summary)s, %(level)s, %(channel)s, %(thumbnail)s, %(published_at)s,
                                    %(rank)s, %(score)s, %(created_at)s, %(created_at)s
                                )
                                on conflict (search_term, learning_goal, id) do update set
                                    title = excluded.title,
                                    url = excluded.url,
                                    summary = excluded.summary,
                                    level = excluded.level,
                                    channel = excluded.channel,
                                    thumbnail = excluded.thumbnail,
                                    published_at = excluded.published_at,
                                    rank = excluded.rank,
                                    score = excluded.score,
                                    updated_at = excluded.updated_at;
                                """,
                                videos,
                            )
                        if quizzes:
                            cur.executemany(
                                """
                                insert into quizzes (
                                    video_id, search_term, learning_goal, title, url, level,
                                    difficulty, question, answer, created_at
                                ) values (
                                    %(video_id)s, %(search_term)s, %(learning_goal)s, %(title)s, %(url)s,
                                    %(level)s, %(difficulty)s, %(question)s, %(answer)s, %(created_at)s
                                )
                                on conflict (search_term, learning_goal, video_id, question) do update set
                                    title = excluded.title,
                                    url = excluded.url,
                                    level = excluded.level,
                                    difficulty = excluded.difficulty,
                                    answer = excluded.answer;
                                """,
                                quizzes,
                            )

    def fetch_videos_for_topic(self, search_term: str, learning_goal: str) -> list[Dict[str, Any]]:
        with _store_errors("Looking up videos"):
            with self.connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        select * from videos
                        where search_term = %(search_term)s and learning_goal = %(learning_goal)s
                        order by rank asc nulls last, created_at desc;
                        """,
                        {"search_term": search_term, "learning_goal": learning_goal},
                    )
                    return cur.fetchall()

    def fetch_quizzes_for_topic(self, search_term: str, learning_goal: str) -> list[Dict[str, Any]]:
        with _store_errors("Looking up quizzes"):
            with self.connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        select * from quizzes
                        where search_term = %(search_term)s and learning_goal = %(learning_goal)s
                        order by video_id, created_at;
                        """,
                        {"search_term": search_term, "learning_goal": learning_goal},
                    )
                    return cur.fetchall()

    # Generation locks

    def claim_generation_lock(
        self,
        search_term: str,
        learning_goal: str,
        lease_id: str,
        acquired_at: datetime,
        stale_before: datetime,
    ) -> Optional[Dict[str, Any]]:
        """Insert a lease, or take over one older than ``stale_before``.

        Returns the lease row that holds the key after the statement, or None
        when the holder released between the insert and the read.
        """
        params = {
            "search_term": search_term,
            "learning_goal": learning_goal,
            "lease_id": lease_id,
            "acquired_at": acquired_at,
            "stale_before": stale_before,
        }
        with _store_errors("Claiming generation lock"):
            with self.connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        insert into generation_locks (search_term, learning_goal, lease_id, acquired_at)
                        values (%(search_term)s, %(learning_goal)s, %(lease_id)s, %(acquired_at)s)
                        on conflict (search_term, learning_goal) do update set
                            lease_id = excluded.lease_id,
                            acquired_at = excluded.acquired_at
                        where generation_locks.acquired_at < %(stale_before)s
                        returning search_term, learning_goal, lease_id, acquired_at,
                            (xmax::text <> '0') as took_over_stale;
                        """,
                        params,
                    )
                    row = cur.fetchone()
                    if row:
                        return row
                    cur.execute(
                        """
                        select search_term, learning_goal, lease_id, acquired_at
                        from generation_locks
                        where search_term = %(search_term)s and learning_goal = %(learning_goal)s;
                        """,
                        params,
                    )
                    return cur.fetchone()

    def delete_generation_lock(self, search_term: str, learning_goal: str, lease_id: Optional[str] = None) -> bool:
        clauses = ["search_term = %(search_term)s", "learning_goal = %(learning_goal)s"]
        params: Dict[str, Any] = {"search_term": search_term, "learning_goal": learning_goal}
        if lease_id is not None:
            clauses.append("lease_id = %(lease_id)s")
            params["lease_id"] = lease_id
        with _store_errors("Releasing generation lock"):
            with self.connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(f"delete from generation_locks where {' and '.join(clauses)};", params)
                    return cur.rowcount > 0

    def renew_generation_lock(
        self,
        search_term: str,
        learning_goal: str,
        lease_id: str,
        acquired_at: datetime,
    ) -> Optional[Dict[str, Any]]:
        """Restart the lease clock for ``lease_id``; None when another lease holds the key."""
        with _store_errors("Renewing generation lock"):
            with self.connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        update generation_locks set acquired_at = %(acquired_at)s
                        where search_term = %(search_term)s
                            and learning_goal = %(learning_goal)s
                            and lease_id = %(lease_id)s
                        returning search_term, learning_goal, lease_id, acquired_at;
                        """,
                        {
                            "search_term": search_term,
                            "learning_goal": learning_goal,
                            "lease_id": lease_id,
                            "acquired_at": acquired_at,
                        },
                    )
                    return cur.fetchone()

    def fetch_stale_generation_locks(self, stale_before: datetime, limit: int = 50) -> list[Dict[str, Any]]:
        with _store_errors("Listing stale generation locks"):
            with self.connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        select search_term, learning_goal, lease_id, acquired_at
                        from generation_locks
                        where acquired_at < %(stale_before)s
                        order by acquired_at asc
                        limit %(limit)s;
                        """,
                        {"stale_before": stale_before, "limit": limit},
                    )
                    return cur.fetchall()

    # Generation logs

    def create_generation_log(self, payload: Dict[str, Any]) -> None:
        with _store_errors("Creating generation log"):
            with self.connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        insert into generation_logs (
                            id, search_term, learning_goal, status, started_at,
                            videos_generated, quizzes_generated
                        ) values (
                            %(id)s, %(search_term)s, %(learning_goal)s, %(status)s, %(started_at)s,
                            %(videos_generated)s, %(quizzes_generated)s
                        );
                        """,
                        payload,
                    )

    def update_generation_log(self, log_id: str, **fields: Any) -> None:
        updates = []
        params: Dict[str, Any] = {"id": log_id}
        for column in _LOG_UPDATE_COLUMNS:
            if fields.get(column) is not None:
                updates.append(f"{column} = %({column})s")
                params[column] = fields[column]
        if not updates:
            return
        set_clause = ", ".join(updates)
        with _store_errors("Updating generation log"):
            with self.connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(f"update generation_logs set {set_clause} where id = %(id)s;", params)

    def fetch_generation_log(self, log_id: str) -> Optional[Dict[str, Any]]:
        with _store_errors("Reading generation log"):
            with self.connect() as conn:
                with conn.cursor() as cur:
                    cur.execute("select * from generation_logs where id = %s;", (log_id,))
                    return cur.fetchone()

    def fetch_generation_logs(
        self,
        search_term: str,
        learning_goal: str,
        limit: Optional[int] = None,
    ) -> list[Dict[str, Any]]:
        params: Dict[str, Any] = {"search_term": search_term, "learning_goal": learning_goal}
        limit_clause = ""
        if limit is not None:
            limit_clause = " limit %(limit)s"
            params["limit"] = limit
        with _store_errors("Listing generation logs"):
            with self.connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "select * from generation_logs"
                        " where search_term = %(search_term)s and learning_goal = %(learning_goal)s"
                        f" order by started_at desc{limit_clause};",
                        params,
                    )
                    return cur.fetchall()

    def count_generation_logs_by_status(self) -> dict[str, int]:
        with _store_errors("Counting generation logs"):
            with self.connect() as conn:
                with conn.cursor() as cur:
                    cur.execute("select status, count(*) as total from generation_logs group by status;")
                    return {row["status"]: int(row["total"]) for row in cur.fetchall()}


def get_database() -> Database:
    dsn = os.getenv("DATABASE_URL")
    if not dsn:
        raise StoreError("DATABASE_URL must be set for database access.")
    db = Database(dsn=dsn)
    db.migrate()
    return db
