#!/usr/bin/env python3
"""Generation orchestrator: search, rank, summarize, quiz and persist one topic key.

The orchestrator only drives collaborators. Lock ownership and the generation
log belong to the caller (``backend.jobs``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from pipeline.content_templates import get_quiz_template, get_summary_template
from pipeline.errors import NoContentFound, ProviderError
from pipeline.models import GeneratedVideo, QuizItem, RankedVideo, VideoCandidate, VideoStats, VideoSummary
from pipeline.normalize import TopicPairKey
from pipeline.ranking import rank_videos, top_k


LOGGER = logging.getLogger("learnhub.orchestrator")

DEFAULT_TOP_K = 5


class VideoSearchProvider(Protocol):
    def search(self, search_term: str, learning_goal: str = "") -> List[VideoCandidate]: ...


class StatisticsProvider(Protocol):
    def stats(self, video_ids: Sequence[str]) -> Dict[str, VideoStats]: ...


class LearningContentGenerator(Protocol):
    def summarize(self, video: VideoCandidate, key: TopicPairKey) -> VideoSummary: ...

    def quiz(self, video: VideoCandidate, key: TopicPairKey, summary: str) -> List[QuizItem]: ...


class ContentStore(Protocol):
    def upsert_learning_content(self, videos: List[Dict[str, Any]], quizzes: List[Dict[str, Any]]) -> None: ...


RankFunction = Callable[[Sequence[VideoCandidate], Mapping[str, VideoStats]], List[RankedVideo]]


@dataclass
class GenerationCollaborators:
    video_search: VideoSearchProvider
    statistics: StatisticsProvider
    llm: LearningContentGenerator
    store: ContentStore
    rank: RankFunction = rank_videos
    top_k: int = DEFAULT_TOP_K


@dataclass(frozen=True)
class GenerationOutcome:
    videos_generated: int
    quizzes_generated: int
    degraded_videos: int = 0

    def as_dict(self) -> dict:
        return {
            "videosGenerated": self.videos_generated,
            "quizzesGenerated": self.quizzes_generated,
            "degradedVideos": self.degraded_videos,
        }


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _summarize_with_fallback(llm: LearningContentGenerator, video: VideoCandidate, key: TopicPairKey) -> tuple[VideoSummary, bool]:
    try:
        return llm.summarize(video, key), False
    except ProviderError as exc:
        LOGGER.warning(
            "generation.summary_degraded",
            extra={"video_id": video.video_id, "error": str(exc)},
        )
        return get_summary_template(video, key.search_term, key.learning_goal), True


def _quiz_with_fallback(
    llm: LearningContentGenerator,
    video: VideoCandidate,
    key: TopicPairKey,
    summary: VideoSummary,
) -> tuple[List[QuizItem], bool]:
    try:
        quizzes = llm.quiz(video, key, summary.summary)
    except ProviderError as exc:
        LOGGER.warning(
            "generation.quiz_degraded",
            extra={"video_id": video.video_id, "error": str(exc)},
        )
        return get_quiz_template(video, key.search_term, key.learning_goal), True

    unique: List[QuizItem] = []
    seen: set[str] = set()
    for item in quizzes:
        question = item.question.strip()
        if not question or not item.answer.strip() or question in seen:
            continue
        seen.add(question)
        unique.append(item)
    if not unique:
        # Every stored video carries at least one quiz.
        return get_quiz_template(video, key.search_term, key.learning_goal), True
    return unique, False


def build_video_row(generated: GeneratedVideo, key: TopicPairKey, created_at: str) -> Dict[str, Any]:
    candidate = generated.ranked.candidate
    return {
        "id": candidate.video_id,
        "search_term": key.search_term,
        "learning_goal": key.learning_goal,
        "title": candidate.title,
        "url": candidate.url,
        "summary": generated.summary.summary,
        "level": generated.summary.level,
        "channel": candidate.channel,
        "thumbnail": candidate.thumbnail,
        "published_at": candidate.published_at,
        "rank": generated.ranked.rank,
        "score": generated.ranked.score,
        "created_at": created_at,
    }


def build_quiz_rows(generated: GeneratedVideo, key: TopicPairKey, created_at: str) -> List[Dict[str, Any]]:
    candidate = generated.ranked.candidate
    return [
        {
            "video_id": candidate.video_id,
            "search_term": key.search_term,
            "learning_goal": key.learning_goal,
            "title": candidate.title,
            "url": candidate.url,
            "level": generated.summary.level,
            "difficulty": quiz.difficulty or "medium",
            "question": quiz.question,
            "answer": quiz.answer,
            "created_at": created_at,
        }
        for quiz in generated.quizzes
    ]


def generate(
    key: TopicPairKey,
    collaborators: GenerationCollaborators,
    now: Optional[str] = None,
) -> GenerationOutcome:
    """Produce and persist learning content for ``key``.

    Raises:
        NoContentFound: search returned no candidates; nothing is written
        ProviderError: search or statistics failed after retries
        StoreError: persisting the rows failed
    """
    log_fields = {"search_term": key.search_term, "learning_goal": key.learning_goal}

    candidates = collaborators.video_search.search(key.search_term, key.learning_goal)
    if not candidates:
        raise NoContentFound(f"No videos found for topic: {key.search_term}")
    LOGGER.info("generation.candidates", extra={**log_fields, "result_count": len(candidates)})

    stats_by_id = collaborators.statistics.stats([candidate.video_id for candidate in candidates])
    ranked = collaborators.rank(candidates, stats_by_id)
    selected = top_k(ranked, collaborators.top_k)
    if not selected:
        raise NoContentFound(f"No rankable videos found for topic: {key.search_term}")

    generated: List[GeneratedVideo] = []
    for ranked_video in selected:
        summary, summary_degraded = _summarize_with_fallback(collaborators.llm, ranked_video.candidate, key)
        quizzes, quiz_degraded = _quiz_with_fallback(collaborators.llm, ranked_video.candidate, key, summary)
        generated.append(
            GeneratedVideo(
                ranked=ranked_video,
                summary=summary,
                quizzes=quizzes,
                degraded=summary_degraded or quiz_degraded,
            )
        )

    created_at = now or _iso_now()
    video_rows = [build_video_row(item, key, created_at) for item in generated]
    quiz_rows = [row for item in generated for row in build_quiz_rows(item, key, created_at)]

    collaborators.store.upsert_learning_content(video_rows, quiz_rows)

    outcome = GenerationOutcome(
        videos_generated=len(video_rows),
        quizzes_generated=len(quiz_rows),
        degraded_videos=sum(1 for item in generated if item.degraded),
    )
    LOGGER.info(
        "generation.persisted",
        extra={
            **log_fields,
            "videos_generated": outcome.videos_generated,
            "quizzes_generated": outcome.quizzes_generated,
            "degraded_videos": outcome.degraded_videos,
        },
    )
    return outcome
