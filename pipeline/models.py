"""Value types passed between the generation collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class VideoCandidate:
    video_id: str
    title: str
    url: str
    channel: str = ""
    thumbnail: str = ""
    description: str = ""
    published_at: Optional[str] = None


@dataclass(frozen=True)
class VideoStats:
    views: int = 0
    likes: int = 0
    comments: int = 0


@dataclass(frozen=True)
class RankedVideo:
    candidate: VideoCandidate
    stats: VideoStats
    score: float
    rank: int

    @property
    def video_id(self) -> str:
        return self.candidate.video_id


@dataclass(frozen=True)
class VideoSummary:
    summary: str
    level: str


@dataclass(frozen=True)
class QuizItem:
    question: str
    answer: str
    difficulty: str = "medium"


@dataclass
class GeneratedVideo:
    """A ranked video with its summary and quiz, ready to be persisted."""

    ranked: RankedVideo
    summary: VideoSummary
    quizzes: list[QuizItem] = field(default_factory=list)
    degraded: bool = False
