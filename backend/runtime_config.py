from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from pipeline.llm_generation import SUPPORTED_PROVIDERS
from pipeline.ranking import RankingWeights


INLINE_TRUE_VALUES = {"1", "true", "yes", "on"}

DEFAULT_REDIS_URL = "redis://localhost:6379/0"

DEFAULT_LOCK_TTL_SEC = 900

_POSITIVE_INT_SETTINGS = (
    ("LH_LOCK_TTL_SEC", DEFAULT_LOCK_TTL_SEC),
    ("LH_TOP_K", 5),
    ("LH_YOUTUBE_MAX_RESULTS", 10),
)

_RANK_WEIGHT_SETTINGS = (
    ("LH_RANK_WEIGHT_VIEWS", "views"),
    ("LH_RANK_WEIGHT_LIKES", "like_ratio"),
    ("LH_RANK_WEIGHT_COMMENTS", "comment_ratio"),
    ("LH_RANK_WEIGHT_RECENCY", "recency"),
)


@dataclass(frozen=True)
class GenerationSettings:
    lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SEC
    top_k: int = 5
    youtube_max_results: int = 10
    llm_provider: str = "groq"
    llm_model: Optional[str] = None
    ranking_weights: RankingWeights = field(default_factory=RankingWeights)


def _require_positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw_value = env.get(name, str(default)).strip()
    try:
        parsed = int(raw_value)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer.") from exc
    if parsed <= 0:
        raise RuntimeError(f"{name} must be a positive integer.")
    return parsed


def _require_non_negative_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw_value = env.get(name, str(default)).strip()
    try:
        parsed = float(raw_value)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number.") from exc
    if parsed < 0:
        raise RuntimeError(f"{name} must be zero or greater.")
    return parsed


def _llm_provider(env: Mapping[str, str]) -> str:
    provider = env.get("LH_LLM_PROVIDER", "groq").strip().lower()
    if provider not in SUPPORTED_PROVIDERS:
        supported = ", ".join(sorted(SUPPORTED_PROVIDERS))
        raise RuntimeError(f"LH_LLM_PROVIDER must be one of: {supported}.")
    return provider


def is_inline_jobs_enabled(env: Mapping[str, str] | None = None) -> bool:
    active_env = os.environ if env is None else env
    return active_env.get("LH_INLINE_JOBS", "").strip().lower() in INLINE_TRUE_VALUES


def lock_ttl_seconds(env: Mapping[str, str] | None = None) -> int:
    """Lease TTL for generation locks. Also bounds the rq job timeout."""
    active_env = os.environ if env is None else env
    return _require_positive_int(active_env, "LH_LOCK_TTL_SEC", DEFAULT_LOCK_TTL_SEC)


def load_generation_settings(env: Mapping[str, str] | None = None) -> GenerationSettings:
    active_env = os.environ if env is None else env
    defaults = RankingWeights()
    weights = {
        attribute: _require_non_negative_float(active_env, env_name, getattr(defaults, attribute))
        for env_name, attribute in _RANK_WEIGHT_SETTINGS
    }
    return GenerationSettings(
        lock_ttl_seconds=lock_ttl_seconds(active_env),
        top_k=_require_positive_int(active_env, "LH_TOP_K", 5),
        youtube_max_results=_require_positive_int(active_env, "LH_YOUTUBE_MAX_RESULTS", 10),
        llm_provider=_llm_provider(active_env),
        llm_model=active_env.get("LH_LLM_MODEL", "").strip() or None,
        ranking_weights=RankingWeights(**weights),
    )


def validate_runtime_environment(mode: str, env: Mapping[str, str] | None = None) -> None:
    active_env = os.environ if env is None else env

    errors: list[str] = []
    database_url = active_env.get("DATABASE_URL", "").strip()
    if not database_url:
        errors.append("DATABASE_URL must be set.")

    redis_url = active_env.get("REDIS_URL", DEFAULT_REDIS_URL).strip()
    inline_jobs = is_inline_jobs_enabled(active_env)
    if mode == "worker" or not inline_jobs:
        if not redis_url:
            errors.append("REDIS_URL must be set when queue-backed jobs are enabled.")

    for env_name, default in _POSITIVE_INT_SETTINGS:
        try:
            _require_positive_int(active_env, env_name, default)
        except RuntimeError as exc:
            errors.append(str(exc))

    try:
        _llm_provider(active_env)
    except RuntimeError as exc:
        errors.append(str(exc))

    defaults = RankingWeights()
    for env_name, attribute in _RANK_WEIGHT_SETTINGS:
        try:
            _require_non_negative_float(active_env, env_name, getattr(defaults, attribute))
        except RuntimeError as exc:
            errors.append(str(exc))

    if errors:
        error_lines = "\n- ".join(errors)
        raise RuntimeError(f"Invalid runtime environment for {mode}:\n- {error_lines}")
