#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from collections import Counter
from pathlib import Path
from typing import Callable, Iterable, List, Tuple

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.db import get_database
from backend.generation_lock import GenerationLock
from backend.jobs import request_learning_path
from backend.logging_config import configure_logging
from backend.runtime_config import load_generation_settings
from pipeline.normalize import TopicPairKey


LOGGER = logging.getLogger("learnhub.prepopulate")

DEFAULT_TOPICS: Tuple[Tuple[str, str], ...] = (
    ("python", "beginner"),
    ("javascript", "beginner"),
    ("react", "intermediate"),
    ("node", "advanced"),
)

RequestFn = Callable[[str, str], dict]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pre-generate learning paths for common topics and stale requests.")
    parser.add_argument("--topic", default=None, help="Generate a single topic instead of the default list.")
    parser.add_argument("--goal", default="beginner", help="Learning goal used with --topic.")
    parser.add_argument("--skip-stale", action="store_true", help="Do not re-drive stale generation leases.")
    parser.add_argument("--stale-limit", type=int, default=50)
    return parser


def collect_pairs(
    topic: str | None,
    goal: str,
    stale: Iterable[TopicPairKey] = (),
) -> List[Tuple[str, str]]:
    if topic:
        return [(topic, goal)]
    pairs = list(DEFAULT_TOPICS)
    seen = set(pairs)
    for key in stale:
        pair = (key.search_term, key.learning_goal)
        if pair not in seen:
            seen.add(pair)
            pairs.append(pair)
    return pairs


def prepopulate(pairs: Iterable[Tuple[str, str]], request: RequestFn = request_learning_path) -> Counter:
    """Send every pair through the normal request path and count response statuses."""
    outcomes: Counter = Counter()
    for search_term, learning_goal in pairs:
        response = request(search_term, learning_goal)
        status = str(response.get("status") or "unknown")
        outcomes[status] += 1
        LOGGER.info(
            "prepopulate.topic",
            extra={
                "search_term": search_term,
                "learning_goal": learning_goal,
                "status": status,
                "error": response.get("message"),
            },
        )
    return outcomes


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    configure_logging()

    stale: List[TopicPairKey] = []
    if not args.topic and not args.skip_stale:
        lock = GenerationLock(get_database(), ttl_seconds=load_generation_settings().lock_ttl_seconds)
        stale = lock.stale_leases(limit=args.stale_limit)

    outcomes = prepopulate(collect_pairs(args.topic, args.goal, stale))
    print(
        "Pre-population complete: "
        + " ".join(f"{status}={count}" for status, count in sorted(outcomes.items()))
    )
    return 1 if outcomes.get("error") else 0


if __name__ == "__main__":
    raise SystemExit(main())
