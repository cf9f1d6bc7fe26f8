#!/usr/bin/env python3
"""Engagement-weighted ranking of YouTube candidates."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence

from pipeline.models import RankedVideo, VideoCandidate, VideoStats


SECONDS_PER_YEAR = 60 * 60 * 24 * 365


@dataclass(frozen=True)
class RankingWeights:
    views: float = 0.4
    like_ratio: float = 0.3
    comment_ratio: float = 0.1
    recency: float = 0.2


def _parse_published(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _recency(published_at: Optional[str], now: datetime) -> float:
    published = _parse_published(published_at)
    if published is None:
        return 0.0
    age_years = max(0.0, (now - published).total_seconds() / SECONDS_PER_YEAR)
    return 1.0 / (1.0 + age_years)


def score_video(
    candidate: VideoCandidate,
    stats: VideoStats,
    max_views: int,
    weights: RankingWeights,
    now: datetime,
) -> float:
    views = max(0, stats.views)
    like_ratio = stats.likes / views if views > 0 else 0.0
    comment_ratio = stats.comments / views if views > 0 else 0.0
    views_norm = math.log10(views + 1) / math.log10(max(max_views, 1) + 1)

    score = (
        views_norm * weights.views
        + like_ratio * weights.like_ratio
        + comment_ratio * weights.comment_ratio
        + _recency(candidate.published_at, now) * weights.recency
    )
    return round(score, 4)


def rank_videos(
    candidates: Sequence[VideoCandidate],
    stats_by_id: Mapping[str, VideoStats],
    weights: Optional[RankingWeights] = None,
    now: Optional[datetime] = None,
) -> List[RankedVideo]:
    """Score every candidate and return them best-first with 1-based ranks.

    Candidates without statistics score as if they had zero engagement. Ties
    keep the search order.
    """
    if not candidates:
        return []
    weights = weights or RankingWeights()
    now = now or datetime.now(timezone.utc)

    resolved: Dict[str, VideoStats] = {
        candidate.video_id: stats_by_id.get(candidate.video_id, VideoStats())
        for candidate in candidates
    }
    max_views = max(stats.views for stats in resolved.values())

    scored = [
        (score_video(candidate, resolved[candidate.video_id], max_views, weights, now), candidate)
        for candidate in candidates
    ]
    scored.sort(key=lambda item: item[0], reverse=True)

    return [
        RankedVideo(candidate=candidate, stats=resolved[candidate.video_id], score=score, rank=index + 1)
        for index, (score, candidate) in enumerate(scored)
    ]


def top_k(ranked: Sequence[RankedVideo], k: int) -> List[RankedVideo]:
    if k <= 0:
        return []
    return list(ranked[:k])
