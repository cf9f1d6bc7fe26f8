#!/usr/bin/env python3
"""Deterministic summary and quiz templates used when the LLM is unavailable."""

from __future__ import annotations

from typing import List

from pipeline.models import QuizItem, VideoCandidate, VideoSummary


_KNOWN_LEVELS = {"beginner", "intermediate", "advanced"}


def template_level(learning_goal: str) -> str:
    """Map a canonical learning goal onto a stored difficulty level."""
    goal = (learning_goal or "").strip().lower()
    if goal in _KNOWN_LEVELS:
        return goal.capitalize()
    return "Beginner"


def get_summary_template(video: VideoCandidate, search_term: str, learning_goal: str) -> VideoSummary:
    """
    Build a templated summary for a video.

    Args:
        video: The ranked candidate being summarized
        search_term: Canonical topic
        learning_goal: Canonical proficiency level

    Returns:
        VideoSummary with a fixed, goal-specific sentence pair
    """
    goal = (learning_goal or "").strip().lower()

    if goal == "beginner":
        summary = (
            f"An approachable introduction to {search_term} for newcomers. "
            f"\"{video.title}\" walks through the core ideas with simple examples."
        )
    elif goal == "intermediate":
        summary = (
            f"Builds on {search_term} fundamentals with practical patterns. "
            f"\"{video.title}\" focuses on applying concepts in real projects."
        )
    elif goal == "advanced":
        summary = (
            f"An in-depth look at advanced {search_term} techniques. "
            f"\"{video.title}\" covers trade-offs, internals and expert practices."
        )
    else:
        summary = (
            f"Learn {search_term} concepts through this {learning_goal}-level tutorial. "
            "This video covers essential topics and practical examples."
        )

    return VideoSummary(summary=summary, level=template_level(learning_goal))


def get_quiz_template(video: VideoCandidate, search_term: str, learning_goal: str) -> List[QuizItem]:
    """Two questions every video can answer from its own metadata."""
    quizzes = [
        QuizItem(
            question=f"What is the main topic covered in \"{video.title}\"?",
            answer=f"{search_term} concepts and techniques for {learning_goal} learners",
            difficulty="easy",
        ),
    ]
    if video.channel:
        quizzes.append(
            QuizItem(
                question=f"Which channel published the video \"{video.title}\"?",
                answer=video.channel,
                difficulty="easy",
            )
        )
    else:
        quizzes.append(
            QuizItem(
                question=f"Which proficiency level is \"{video.title}\" recommended for?",
                answer=template_level(learning_goal),
                difficulty="easy",
            )
        )
    return quizzes
