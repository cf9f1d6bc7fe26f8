from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.append(str(ROOT))

from backend.content_lookup import ContentRecord, find_existing
from pipeline.normalize import TopicPairKey


class FakeDB:
    def __init__(self, videos=None, quizzes=None) -> None:
        self.videos = videos or []
        self.quizzes = quizzes or []
        self.quiz_queries: list[tuple[str, str]] = []

    def fetch_videos_for_topic(self, search_term: str, learning_goal: str):
        return [
            row
            for row in self.videos
            if row["search_term"] == search_term and row["learning_goal"] == learning_goal
        ]

    def fetch_quizzes_for_topic(self, search_term: str, learning_goal: str):
        self.quiz_queries.append((search_term, learning_goal))
        return [
            row
            for row in self.quizzes
            if row["search_term"] == search_term and row["learning_goal"] == learning_goal
        ]


def _video(video_id: str, search_term: str, learning_goal: str, rank: int = 1) -> dict:
    return {
        "id": video_id,
        "search_term": search_term,
        "learning_goal": learning_goal,
        "title": f"Video {video_id}",
        "url": f"https://www.youtube.com/watch?v={video_id}",
        "summary": "summary",
        "level": learning_goal.capitalize(),
        "channel": "Channel",
        "thumbnail": "",
        "rank": rank,
        "created_at": datetime(2026, 3, 1, tzinfo=timezone.utc),
    }


def _quiz(video_id: str, search_term: str, learning_goal: str, question: str) -> dict:
    return {
        "video_id": video_id,
        "search_term": search_term,
        "learning_goal": learning_goal,
        "question": question,
        "answer": "answer",
        "difficulty": "easy",
    }


def test_miss_returns_none_without_quiz_query():
    db = FakeDB()

    assert find_existing(db, TopicPairKey("python", "beginner")) is None
    assert db.quiz_queries == []


def test_match_requires_both_fields():
    db = FakeDB(videos=[_video("a", "python", "advanced"), _video("b", "java", "beginner")])

    assert find_existing(db, TopicPairKey("python", "beginner")) is None


def test_hit_returns_videos_and_quizzes_for_the_key():
    db = FakeDB(
        videos=[_video("a", "python", "beginner", 1), _video("b", "python", "beginner", 2)],
        quizzes=[
            _quiz("a", "python", "beginner", "Q1"),
            _quiz("a", "python", "beginner", "Q2"),
            _quiz("b", "python", "beginner", "Q3"),
            _quiz("a", "python", "advanced", "Other key"),
        ],
    )

    record = find_existing(db, TopicPairKey("python", "beginner"))

    assert isinstance(record, ContentRecord)
    assert [video["id"] for video in record.videos] == ["a", "b"]
    assert len(record.quizzes) == 3


def test_as_dict_nests_quizzes_under_their_video():
    key = TopicPairKey("python", "beginner")
    record = ContentRecord(
        key=key,
        videos=[_video("a", "python", "beginner")],
        quizzes=[_quiz("a", "python", "beginner", "Q1")],
    )

    payload = record.as_dict()

    assert payload["searchTerm"] == "python"
    assert payload["learningGoal"] == "beginner"
    assert payload["videoCount"] == 1
    assert payload["quizCount"] == 1
    assert payload["videos"][0]["createdAt"] == "2026-03-01T00:00:00+00:00"
    assert payload["videos"][0]["quizzes"] == [{"question": "Q1", "answer": "answer", "difficulty": "easy"}]
