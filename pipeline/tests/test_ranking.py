"""Tests for ranking.py"""

from datetime import datetime, timezone

import pytest

from pipeline.models import VideoCandidate, VideoStats
from pipeline.ranking import RankingWeights, rank_videos, score_video, top_k


NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _candidate(video_id: str, published_at=None) -> VideoCandidate:
    return VideoCandidate(
        video_id=video_id,
        title=f"Video {video_id}",
        url=f"https://www.youtube.com/watch?v={video_id}",
        published_at=published_at,
    )


def test_rank_orders_best_first_with_one_based_ranks(sample_candidates, sample_stats):
    ranked = rank_videos(sample_candidates, sample_stats, now=NOW)

    assert [item.rank for item in ranked] == [1, 2, 3]
    assert [item.score for item in ranked] == sorted((item.score for item in ranked), reverse=True)
    assert ranked[-1].video_id == "vid-c"


def test_views_only_weights_prefer_most_viewed(sample_candidates, sample_stats):
    weights = RankingWeights(views=1.0, like_ratio=0.0, comment_ratio=0.0, recency=0.0)

    ranked = rank_videos(sample_candidates, sample_stats, weights=weights, now=NOW)

    assert [item.video_id for item in ranked] == ["vid-b", "vid-a", "vid-c"]
    assert ranked[0].score == 1.0


def test_ties_keep_search_order():
    candidates = [_candidate("first"), _candidate("second"), _candidate("third")]

    ranked = rank_videos(candidates, {}, now=NOW)

    assert [item.video_id for item in ranked] == ["first", "second", "third"]
    assert all(item.score == 0.0 for item in ranked)


def test_missing_stats_score_as_zero_engagement():
    candidates = [_candidate("known"), _candidate("unknown")]
    stats = {"known": VideoStats(views=100, likes=10, comments=1)}

    ranked = rank_videos(candidates, stats, now=NOW)

    assert ranked[0].video_id == "known"
    assert ranked[1].stats == VideoStats()


def test_recency_decays_with_age():
    weights = RankingWeights(views=0.0, like_ratio=0.0, comment_ratio=0.0, recency=1.0)
    fresh = _candidate("fresh", "2026-01-01T00:00:00Z")
    old = _candidate("old", "2021-01-01T00:00:00Z")

    fresh_score = score_video(fresh, VideoStats(), 0, weights, NOW)
    old_score = score_video(old, VideoStats(), 0, weights, NOW)

    assert fresh_score == 1.0
    assert old_score == pytest.approx(1 / 6, abs=1e-2)


def test_unparseable_publish_date_has_no_recency_bonus():
    weights = RankingWeights(views=0.0, like_ratio=0.0, comment_ratio=0.0, recency=1.0)
    assert score_video(_candidate("x", "yesterday"), VideoStats(), 0, weights, NOW) == 0.0


def test_rank_of_empty_candidates_is_empty():
    assert rank_videos([], {}) == []


def test_top_k(sample_candidates, sample_stats):
    ranked = rank_videos(sample_candidates, sample_stats, now=NOW)

    assert [item.rank for item in top_k(ranked, 2)] == [1, 2]
    assert len(top_k(ranked, 10)) == 3
    assert top_k(ranked, 0) == []
