"""Pytest configuration and shared fixtures for pipeline tests."""

import json
import tempfile
from pathlib import Path

import pytest

from pipeline.models import VideoCandidate, VideoStats
from pipeline.normalize import TopicPairKey


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def topic_key():
    """Canonical key most generation tests run against."""
    return TopicPairKey(search_term="python", learning_goal="beginner")


@pytest.fixture
def sample_candidates():
    """Three search results in the order the search provider returned them."""
    return [
        VideoCandidate(
            video_id="vid-a",
            title="Python for Absolute Beginners",
            url="https://www.youtube.com/watch?v=vid-a",
            channel="Code Academy",
            published_at="2025-06-01T00:00:00Z",
        ),
        VideoCandidate(
            video_id="vid-b",
            title="Learn Python in One Hour",
            url="https://www.youtube.com/watch?v=vid-b",
            channel="",
            published_at="2019-01-15T00:00:00Z",
        ),
        VideoCandidate(
            video_id="vid-c",
            title="Python Crash Course",
            url="https://www.youtube.com/watch?v=vid-c",
            channel="Dev Channel",
            published_at=None,
        ),
    ]


@pytest.fixture
def sample_stats():
    """Engagement numbers keyed by video id."""
    return {
        "vid-a": VideoStats(views=50_000, likes=4_000, comments=300),
        "vid-b": VideoStats(views=2_000_000, likes=60_000, comments=5_000),
        "vid-c": VideoStats(views=1_000, likes=10, comments=1),
    }


@pytest.fixture
def schema_dir(temp_dir):
    """Create temporary schema directory with test schemas."""
    schema_path = temp_dir / "schemas"
    schema_path.mkdir()

    test_schema = {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "properties": {
            "id": {"type": "string"},
            "name": {"type": "string"}
        },
        "required": ["id", "name"]
    }

    with open(schema_path / "test.schema.json", "w") as f:
        json.dump(test_schema, f)

    return schema_path
