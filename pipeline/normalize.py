#!/usr/bin/env python3
"""Canonical topic/goal normalization.

Every caller (API handler, worker, batch script) goes through this module so
that free-text input like ``"React.js"`` and ``"reactjs"`` lands on the same
content, lock and log rows.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional

from pipeline.errors import ValidationError


_DISALLOWED_CHARS = re.compile(r"[^\w\s#+.\-]")
_WHITESPACE_RUN = re.compile(r"\s+")
_LEVEL_SUFFIX = " level"


TECH_SYNONYMS: Mapping[str, str] = {
    # JavaScript
    "js": "javascript",
    "ecmascript": "javascript",
    "java script": "javascript",
    # Node.js
    "node.js": "node",
    "nodejs": "node",
    "node js": "node",
    # React
    "react.js": "react",
    "reactjs": "react",
    "react js": "react",
    # Vue
    "vue.js": "vue",
    "vuejs": "vue",
    "vue js": "vue",
    # Angular
    "angular.js": "angular",
    "angularjs": "angular",
    "angular js": "angular",
    # C#
    "c sharp": "c#",
    "csharp": "c#",
    "c-sharp": "c#",
    "c #": "c#",
    # C++
    "c plus plus": "c++",
    "cplusplus": "c++",
    "c plus": "c++",
    "c + +": "c++",
    "cpp": "c++",
    # Python
    "python3": "python",
    "python 3": "python",
    "py": "python",
    # TypeScript
    "ts": "typescript",
    "type script": "typescript",
    # Databases
    "postgresql": "postgres",
    "postgres sql": "postgres",
    "my sql": "mysql",
    "mongodb": "mongo",
    "mongo db": "mongo",
    # Frameworks
    "next.js": "nextjs",
    "next js": "nextjs",
    "nuxt.js": "nuxtjs",
    "nuxt js": "nuxtjs",
    "express.js": "express",
    "express js": "express",
    # .NET
    ".net": "dotnet",
    "dot net": "dotnet",
    # Markup and styles
    "css3": "css",
    "css 3": "css",
    "html5": "html",
    "html 5": "html",
    # DevOps and cloud
    "k8s": "kubernetes",
    "amazon web services": "aws",
    "google cloud platform": "gcp",
    "google cloud": "gcp",
    "microsoft azure": "azure",
}

GOAL_SYNONYMS: Mapping[str, str] = {
    "beginner": "beginner",
    "basic": "beginner",
    "basics": "beginner",
    "intro": "beginner",
    "introduction": "beginner",
    "introductory": "beginner",
    "starter": "beginner",
    "fundamentals": "beginner",
    "entry": "beginner",
    "newbie": "beginner",
    "novice": "beginner",
    "intermediate": "intermediate",
    "mid": "intermediate",
    "middle": "intermediate",
    "moderate": "intermediate",
    "advanced": "advanced",
    "expert": "advanced",
    "professional": "advanced",
    "pro": "advanced",
    "senior": "advanced",
    "master": "advanced",
    "mastery": "advanced",
}


class SynonymTable:
    """Immutable many-to-one alias table.

    ``goal_aliases`` is the proficiency-level subset; lookups without a goal
    flag consult both subsets.
    """

    def __init__(self, tech_aliases: Mapping[str, str], goal_aliases: Mapping[str, str]) -> None:
        overlap = set(tech_aliases) & set(goal_aliases)
        if overlap:
            raise ValueError(f"Alias defined in both tech and goal tables: {sorted(overlap)}")

        combined = {**tech_aliases, **goal_aliases}
        for alias, canonical in combined.items():
            target = combined.get(canonical)
            if target is not None and target != canonical:
                raise ValueError(
                    f"Synonym cycle: '{alias}' -> '{canonical}' but '{canonical}' -> '{target}'."
                )

        self._all = MappingProxyType(combined)
        self._goals = MappingProxyType(dict(goal_aliases))

    def lookup(self, text: str) -> Optional[str]:
        return self._all.get(text)

    def lookup_goal(self, text: str) -> Optional[str]:
        return self._goals.get(text)

    def __len__(self) -> int:
        return len(self._all)


DEFAULT_SYNONYMS = SynonymTable(TECH_SYNONYMS, GOAL_SYNONYMS)


def _clean(value: str) -> str:
    cleaned = value.strip().lower()
    cleaned = _DISALLOWED_CHARS.sub(" ", cleaned)
    return _WHITESPACE_RUN.sub(" ", cleaned).strip()


def normalize_text(
    value: Optional[str],
    is_goal_field: bool = False,
    synonyms: SynonymTable = DEFAULT_SYNONYMS,
) -> str:
    """Map free text to its canonical lowercase token. Never raises."""
    if not isinstance(value, str):
        return ""

    normalized = _clean(value)
    if not normalized:
        return ""

    canonical = synonyms.lookup(normalized)
    if canonical is not None:
        normalized = canonical

    if is_goal_field and normalized.endswith(_LEVEL_SUFFIX):
        base = normalized[: -len(_LEVEL_SUFFIX)].strip()
        goal = synonyms.lookup_goal(base)
        if goal is not None:
            normalized = goal

    return normalized


def is_normalized(value: Optional[str], is_goal_field: bool = False) -> bool:
    if not isinstance(value, str) or not value:
        return False
    return normalize_text(value, is_goal_field) == value


@dataclass(frozen=True)
class TopicPairKey:
    search_term: str
    learning_goal: str

    def as_dict(self) -> dict[str, str]:
        return {"searchTerm": self.search_term, "learningGoal": self.learning_goal}

    def __str__(self) -> str:
        return f"{self.search_term} + {self.learning_goal}"


def make_topic_key(
    search_term: Optional[str],
    learning_goal: Optional[str],
    synonyms: SynonymTable = DEFAULT_SYNONYMS,
) -> TopicPairKey:
    normalized_term = normalize_text(search_term, is_goal_field=False, synonyms=synonyms)
    normalized_goal = normalize_text(learning_goal, is_goal_field=True, synonyms=synonyms)

    missing = []
    if not normalized_term:
        missing.append("searchTerm")
    if not normalized_goal:
        missing.append("learningGoal")
    if missing:
        raise ValidationError(
            "Invalid input: " + " and ".join(missing) + " must contain letters or digits."
        )
    return TopicPairKey(search_term=normalized_term, learning_goal=normalized_goal)
