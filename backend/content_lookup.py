from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pipeline.normalize import TopicPairKey


@dataclass(frozen=True)
class ContentRecord:
    key: TopicPairKey
    videos: List[Dict[str, Any]] = field(default_factory=list)
    quizzes: List[Dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict:
        quizzes_by_video: dict[str, list[dict]] = {}
        for quiz in self.quizzes:
            quizzes_by_video.setdefault(str(quiz.get("video_id")), []).append(
                {
                    "question": quiz.get("question"),
                    "answer": quiz.get("answer"),
                    "difficulty": quiz.get("difficulty"),
                }
            )
        return {
            **self.key.as_dict(),
            "videos": [
                {
                    "id": video.get("id"),
                    "title": video.get("title"),
                    "url": video.get("url"),
                    "summary": video.get("summary"),
                    "level": video.get("level"),
                    "channel": video.get("channel"),
                    "thumbnail": video.get("thumbnail"),
                    "rank": video.get("rank"),
                    "createdAt": _iso(video.get("created_at")),
                    "quizzes": quizzes_by_video.get(str(video.get("id")), []),
                }
                for video in self.videos
            ],
            "videoCount": len(self.videos),
            "quizCount": len(self.quizzes),
        }


def _iso(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def find_existing(db, key: TopicPairKey) -> Optional[ContentRecord]:
    """Return stored content matching both fields of ``key``, or None on a miss."""
    videos = [
        row
        for row in db.fetch_videos_for_topic(key.search_term, key.learning_goal)
        if row.get("search_term") == key.search_term and row.get("learning_goal") == key.learning_goal
    ]
    if not videos:
        return None
    quizzes = db.fetch_quizzes_for_topic(key.search_term, key.learning_goal)
    return ContentRecord(key=key, videos=videos, quizzes=list(quizzes))
