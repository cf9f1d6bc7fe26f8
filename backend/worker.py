from __future__ import annotations

import logging
import os

from redis import Redis
from rq import Worker

from backend.jobs import QUEUE_NAME
from backend.logging_config import configure_logging
from backend.runtime_config import DEFAULT_REDIS_URL, validate_runtime_environment


LOGGER = logging.getLogger("learnhub.worker")


def main() -> None:
    configure_logging()
    validate_runtime_environment("worker")
    redis_url = os.getenv("REDIS_URL", DEFAULT_REDIS_URL)
    connection = Redis.from_url(redis_url)
    LOGGER.info("worker.start", extra={"mode": "queue"})
    worker = Worker([QUEUE_NAME], connection=connection)
    worker.work()


if __name__ == "__main__":
    main()
