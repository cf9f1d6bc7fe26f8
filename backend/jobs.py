from __future__ import annotations

import logging
import os
from datetime import datetime
from functools import partial
from time import perf_counter
from typing import Any, Dict, Optional

from redis import Redis
from rq import Queue

from backend.content_lookup import find_existing
from backend.db import get_database
from backend.generation_lock import AlreadyInFlight, GenerationLock, LeaseSuperseded
from backend.generation_log import FAILED, IN_PROGRESS, STARTED, SUCCESS, GenerationLog
from backend.observability import METRICS
from backend.runtime_config import (
    DEFAULT_LOCK_TTL_SEC,
    DEFAULT_REDIS_URL,
    GenerationSettings,
    is_inline_jobs_enabled,
    load_generation_settings,
)
from pipeline.errors import LearnHubError
from pipeline.llm_generation import LLMClient
from pipeline.normalize import TopicPairKey, make_topic_key
from pipeline.orchestrator import GenerationCollaborators, generate
from pipeline.ranking import rank_videos
from pipeline.youtube import YouTubeClient


LOGGER = logging.getLogger("learnhub.jobs")

QUEUE_NAME = "learnhub"


def _log_job_event(event: str, **fields: Any) -> None:
    LOGGER.info(event, extra={k: v for k, v in fields.items() if v is not None})


def _iso(value: datetime) -> str:
    return value.isoformat()


def _get_queue() -> Queue:
    redis_url = os.getenv("REDIS_URL", DEFAULT_REDIS_URL)
    connection = Redis.from_url(redis_url)
    return Queue(QUEUE_NAME, connection=connection)


def _should_run_jobs_inline() -> bool:
    return is_inline_jobs_enabled()


def default_collaborators(db, settings: Optional[GenerationSettings] = None) -> GenerationCollaborators:
    settings = settings or load_generation_settings()
    youtube = YouTubeClient(max_results=settings.youtube_max_results)
    return GenerationCollaborators(
        video_search=youtube,
        statistics=youtube,
        llm=LLMClient(provider=settings.llm_provider, model=settings.llm_model),
        store=db,
        rank=partial(rank_videos, weights=settings.ranking_weights),
        top_k=settings.top_k,
    )


def _error_response(exc: Exception, log_id: Optional[str] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "status": "error",
        "message": str(exc) or exc.__class__.__name__,
        "errorType": getattr(exc, "error_type", "error"),
    }
    if log_id:
        payload["logId"] = log_id
    return payload


def _release_quietly(lock: GenerationLock, key: TopicPairKey, lease_id: str) -> None:
    try:
        lock.release(key, lease_id)
    except Exception:
        LOGGER.exception(
            "lock.release_failed",
            extra={"search_term": key.search_term, "learning_goal": key.learning_goal, "lease_id": lease_id},
        )


def _mark_failed_quietly(generation_log: GenerationLog, log_id: str, message: str) -> None:
    try:
        generation_log.update(log_id, FAILED, error_message=message)
    except Exception:
        LOGGER.exception("generation_log.update_failed", extra={"log_id": log_id, "status": FAILED})


def _cleanup_after_failure(db, log_id: str, key: TopicPairKey, lease_id: str, message: str) -> None:
    """Fail the log row and drop the lease, reconnecting once if the run never got a database."""
    if db is None:
        try:
            db = get_database()
        except Exception:
            LOGGER.exception(
                "generation.cleanup_unavailable",
                extra={"log_id": log_id, "search_term": key.search_term, "learning_goal": key.learning_goal},
            )
            return
    _mark_failed_quietly(GenerationLog(db), log_id, message)
    # release ignores the TTL
    _release_quietly(GenerationLock(db, ttl_seconds=DEFAULT_LOCK_TTL_SEC), key, lease_id)


def run_generation_job(
    log_id: str,
    search_term: str,
    learning_goal: str,
    lease_id: str,
    collaborators: Optional[GenerationCollaborators] = None,
) -> Dict[str, Any]:
    """Run one generation for a key whose lease was claimed by the request.

    The lease is renewed before any provider call; a lease taken over while
    the job waited fails the run without generating. Otherwise the lease is
    released and the log row completed whatever happens, and errors come back
    as an ``error`` response instead of being raised.
    """
    key = TopicPairKey(search_term, learning_goal)
    db = None

    _log_job_event("generation.started", log_id=log_id, search_term=search_term, learning_goal=learning_goal)
    started_at = perf_counter()
    try:
        db = get_database()
        settings = load_generation_settings()
        lock = GenerationLock(db, ttl_seconds=settings.lock_ttl_seconds)
        generation_log = GenerationLog(db)
        lock.renew(key, lease_id)
        generation_log.update(log_id, IN_PROGRESS)
        METRICS.increment_generation_status(IN_PROGRESS)
        outcome = generate(key, collaborators or default_collaborators(db, settings))
    except LeaseSuperseded as exc:
        METRICS.increment_lock_event("superseded")
        METRICS.increment_generation_status(FAILED)
        _mark_failed_quietly(GenerationLog(db), log_id, str(exc))
        return _error_response(exc, log_id)
    except Exception as exc:
        log_extra = {"log_id": log_id, "search_term": search_term, "learning_goal": learning_goal, "error": str(exc)}
        if isinstance(exc, LearnHubError):
            LOGGER.warning("generation.failed", extra=log_extra)
        else:
            LOGGER.exception("generation.failed", extra=log_extra)
        METRICS.increment_generation_status(FAILED)
        _cleanup_after_failure(db, log_id, key, lease_id, str(exc) or exc.__class__.__name__)
        return _error_response(exc, log_id)
    finally:
        METRICS.observe_generation_latency((perf_counter() - started_at) * 1000)

    METRICS.increment_generation_status(SUCCESS)
    METRICS.add_degraded_videos(outcome.degraded_videos)
    try:
        generation_log.update(
            log_id,
            SUCCESS,
            videos_generated=outcome.videos_generated,
            quizzes_generated=outcome.quizzes_generated,
        )
    except Exception:
        LOGGER.exception("generation_log.update_failed", extra={"log_id": log_id, "status": SUCCESS})
    _release_quietly(lock, key, lease_id)

    _log_job_event(
        "generation.completed",
        log_id=log_id,
        search_term=search_term,
        learning_goal=learning_goal,
        videos_generated=outcome.videos_generated,
        quizzes_generated=outcome.quizzes_generated,
        degraded_videos=outcome.degraded_videos,
    )
    return {
        "status": "success",
        "videosGenerated": outcome.videos_generated,
        "quizzesGenerated": outcome.quizzes_generated,
        "logId": log_id,
    }


def _dispatch(
    log_id: str,
    key: TopicPairKey,
    lease_id: str,
    started_at: datetime,
    settings: GenerationSettings,
) -> Dict[str, Any]:
    if _should_run_jobs_inline():
        _log_job_event("generation.dispatch", log_id=log_id, search_term=key.search_term, learning_goal=key.learning_goal, mode="inline")
        return run_generation_job(log_id, key.search_term, key.learning_goal, lease_id)

    try:
        queue = _get_queue()
        # Enqueued without rq retries; failed runs are re-driven by a new request.
        queue.enqueue(
            run_generation_job,
            log_id,
            key.search_term,
            key.learning_goal,
            lease_id,
            job_id=log_id,
            job_timeout=settings.lock_ttl_seconds,
        )
    except Exception as exc:
        _log_job_event(
            "generation.dispatch_failed",
            log_id=log_id,
            search_term=key.search_term,
            learning_goal=key.learning_goal,
            error=str(exc),
        )
        return run_generation_job(log_id, key.search_term, key.learning_goal, lease_id)

    _log_job_event("generation.dispatch", log_id=log_id, search_term=key.search_term, learning_goal=key.learning_goal, mode="queue")
    return {"status": "started", "logId": log_id, "startedAt": _iso(started_at)}


def _request_learning_path(search_term: Any, learning_goal: Any) -> Dict[str, Any]:
    try:
        key = make_topic_key(search_term, learning_goal)
        db = get_database()

        existing = find_existing(db, key)
        if existing is not None:
            _log_job_event("lookup.hit", search_term=key.search_term, learning_goal=key.learning_goal)
            return {"status": "exists", "content": existing.as_dict()}

        settings = load_generation_settings()
        lock = GenerationLock(db, ttl_seconds=settings.lock_ttl_seconds)
        result = lock.try_acquire(key)
    except LearnHubError as exc:
        return _error_response(exc)

    if isinstance(result, AlreadyInFlight):
        METRICS.increment_lock_event("conflict")
        minutes_elapsed = result.minutes_elapsed()
        _log_job_event(
            "generation.in_progress",
            search_term=key.search_term,
            learning_goal=key.learning_goal,
            minutes_elapsed=minutes_elapsed,
        )
        return {
            "status": "in_progress",
            "minutesElapsed": minutes_elapsed,
            "startedAt": _iso(result.started_at),
        }

    if result.took_over_stale:
        METRICS.increment_lock_event("stale_takeover")
        LOGGER.warning(
            "lock.stale_takeover",
            extra={"search_term": key.search_term, "learning_goal": key.learning_goal, "lease_id": result.lease_id},
        )

    generation_log = GenerationLog(db)
    try:
        log_id = generation_log.start(key, started_at=result.acquired_at)
    except LearnHubError as exc:
        _release_quietly(lock, key, result.lease_id)
        return _error_response(exc)
    METRICS.increment_generation_status(STARTED)

    return _dispatch(log_id, key, result.lease_id, result.acquired_at, settings)


def request_learning_path(search_term: Any, learning_goal: Any) -> Dict[str, Any]:
    """Return stored content for the pair, or start (or report) its generation.

    Response ``status`` is one of ``exists``, ``in_progress``, ``started``,
    ``success`` or ``error``.
    """
    response = _request_learning_path(search_term, learning_goal)
    METRICS.increment_request_outcome(response["status"])
    return response
