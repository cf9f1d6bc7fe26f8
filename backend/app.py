from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Optional
from uuid import uuid4

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field
from redis import Redis

from backend.content_lookup import find_existing
from backend.db import get_database
from backend.generation_log import GenerationLog, log_api_payload
from backend.jobs import request_learning_path
from backend.logging_config import configure_logging
from backend.observability import METRICS, render_prometheus_metrics
from backend.runtime_config import DEFAULT_REDIS_URL, is_inline_jobs_enabled, validate_runtime_environment
from pipeline.errors import LearnHubError, NoContentFound
from pipeline.normalize import make_topic_key, normalize_text


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    validate_runtime_environment("api")
    yield


app = FastAPI(title="LearnHub Learning Path API", lifespan=app_lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

LOGGER = logging.getLogger("learnhub.api")

_RESPONSE_STATUS_CODES = {
    "exists": 200,
    "success": 200,
    "in_progress": 202,
    "started": 202,
}

_ERROR_STATUS_CODES = {
    "validation": 400,
    "no_content": 404,
    "provider": 502,
    "store": 500,
    "superseded": 409,
}


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid4())
    request.state.request_id = request_id

    started_at = perf_counter()
    response = await call_next(request)
    duration_ms = (perf_counter() - started_at) * 1000

    response.headers["x-request-id"] = request_id
    LOGGER.info(
        "request.complete",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
        },
    )
    return response


class LearningPathRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    search_term: Optional[str] = Field(default=None, alias="searchTerm")
    learning_goal: Optional[str] = Field(default=None, alias="learningGoal")


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _http_status_for(payload: dict[str, Any]) -> int:
    status = payload.get("status")
    if status == "error":
        return _ERROR_STATUS_CODES.get(str(payload.get("errorType")), 500)
    return _RESPONSE_STATUS_CODES.get(str(status), 200)


def _error_payload(exc: LearnHubError) -> dict[str, Any]:
    return {"status": "error", "message": str(exc), "errorType": exc.error_type}


@app.exception_handler(LearnHubError)
async def learnhub_error_handler(_: Request, exc: LearnHubError) -> JSONResponse:
    payload = _error_payload(exc)
    return JSONResponse(status_code=_http_status_for(payload), content=payload)


@app.post("/learning-paths")
def create_learning_path(payload: LearningPathRequest) -> JSONResponse:
    result = request_learning_path(payload.search_term, payload.learning_goal)
    return JSONResponse(status_code=_http_status_for(result), content=result)


@app.get("/learning-paths")
def get_learning_path(
    search_term: Optional[str] = Query(default=None, alias="searchTerm"),
    learning_goal: Optional[str] = Query(default=None, alias="learningGoal"),
) -> dict:
    key = make_topic_key(search_term, learning_goal)
    db = get_database()
    existing = find_existing(db, key)
    if existing is None:
        raise NoContentFound(f"No learning content stored for {key}.")
    return {"status": "exists", "content": existing.as_dict()}


@app.get("/topics/normalize")
def normalize_topic(
    search_term: Optional[str] = Query(default=None, alias="searchTerm"),
    learning_goal: Optional[str] = Query(default=None, alias="learningGoal"),
) -> dict:
    if learning_goal is None:
        return {"searchTerm": normalize_text(search_term)}
    return make_topic_key(search_term, learning_goal).as_dict()


@app.get("/generation-logs/{log_id}")
def get_generation_log(log_id: str) -> JSONResponse:
    db = get_database()
    row = GenerationLog(db).fetch(log_id)
    if not row:
        return JSONResponse(
            status_code=404,
            content={"status": "error", "message": "Generation log not found.", "errorType": "not_found"},
        )
    return JSONResponse(content=log_api_payload(row))


@app.get("/generation-logs")
def list_generation_logs(
    search_term: Optional[str] = Query(default=None, alias="searchTerm"),
    learning_goal: Optional[str] = Query(default=None, alias="learningGoal"),
    limit: int = Query(default=10, ge=1, le=100),
) -> dict:
    key = make_topic_key(search_term, learning_goal)
    db = get_database()
    rows = GenerationLog(db).recent_for_key(key, limit)
    return {
        **key.as_dict(),
        "logs": [log_api_payload(row) for row in rows],
        "count": len(rows),
    }


def _generation_log_snapshot(db) -> dict[str, int]:
    counter = getattr(db, "count_generation_logs_by_status", None)
    if not callable(counter):
        return {}
    return dict(counter())


@app.get("/ops/metrics")
def ops_metrics() -> dict:
    db = get_database()
    return {
        "status": "ok",
        "time": _iso_now(),
        "metrics": METRICS.snapshot(generation_logs=_generation_log_snapshot(db)),
    }


@app.get("/ops/metrics/prometheus")
def ops_metrics_prometheus() -> PlainTextResponse:
    db = get_database()
    snapshot = METRICS.snapshot(generation_logs=_generation_log_snapshot(db))
    return PlainTextResponse(
        content=render_prometheus_metrics(snapshot),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "time": _iso_now()}


@app.get("/health/ready")
def readiness() -> JSONResponse:
    checks: dict[str, dict[str, str]] = {}
    overall_status = "ok"

    try:
        db = get_database()
        db.healthcheck()
        checks["database"] = {"status": "ok"}
    except Exception as exc:
        overall_status = "degraded"
        checks["database"] = {"status": "error", "reason": str(exc)}

    if is_inline_jobs_enabled():
        checks["queue"] = {"status": "skipped", "reason": "LH_INLINE_JOBS is enabled."}
    else:
        redis_url = os.getenv("REDIS_URL", DEFAULT_REDIS_URL)
        try:
            redis_client = Redis.from_url(redis_url)
            redis_client.ping()
            checks["queue"] = {"status": "ok"}
        except Exception as exc:
            overall_status = "degraded"
            checks["queue"] = {"status": "error", "reason": str(exc)}

    status_code = 200 if overall_status == "ok" else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": overall_status,
            "time": _iso_now(),
            "checks": checks,
        },
    )
