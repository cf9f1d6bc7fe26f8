#!/usr/bin/env python3
"""
Apply LearnHub database migrations.
Can be executed as a one-off job or locally.
"""

import logging
import os
import sys

import psycopg

from backend.db import Database
from backend.logging_config import configure_logging
from pipeline.errors import StoreError


LOGGER = logging.getLogger("learnhub.migrations")


def main() -> int:
    configure_logging()
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        LOGGER.error("migrations.failed", extra={"error": "DATABASE_URL must be set."})
        return 1

    db = Database(dsn=db_url)
    try:
        db.migrate()
        with db.connect() as conn:
            with conn.cursor() as cur:
                cur.execute("select id from schema_migrations order by id;")
                applied = [row["id"] for row in cur.fetchall()]
    except (psycopg.Error, StoreError) as exc:
        LOGGER.exception("migrations.failed", extra={"error": str(exc)})
        return 1

    LOGGER.info("migrations.applied", extra={"result_count": len(applied)})
    return 0


if __name__ == "__main__":
    sys.exit(main())
