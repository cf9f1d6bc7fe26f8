"""Tests for youtube.py"""

import io
import json
import urllib.parse
from urllib.error import HTTPError, URLError

import pytest

from pipeline import youtube
from pipeline.errors import ProviderError
from pipeline.retry_utils import RetryConfig


class _FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def _json_response(payload: dict) -> _FakeResponse:
    return _FakeResponse(json.dumps(payload).encode("utf-8"))


def _client(**kwargs) -> youtube.YouTubeClient:
    return youtube.YouTubeClient(
        api_key="test-key",
        retry_config=RetryConfig(max_attempts=2, initial_delay=0.0, max_delay=0.0),
        **kwargs,
    )


def _search_item(video_id, title="A video", channel="Channel"):
    return {
        "id": {"kind": "youtube#video", "videoId": video_id},
        "snippet": {
            "title": title,
            "channelTitle": channel,
            "description": "desc",
            "publishedAt": "2025-01-01T00:00:00Z",
            "thumbnails": {"medium": {"url": f"https://i.ytimg.com/vi/{video_id}/mqdefault.jpg"}},
        },
    }


def test_search_builds_query_and_parses_candidates(monkeypatch):
    requested = []

    def fake_urlopen(url, timeout=None):
        requested.append(url)
        return _json_response(
            {
                "items": [
                    _search_item("abc", title="Python Basics"),
                    _search_item("abc", title="Duplicate"),
                    {"id": {"kind": "youtube#channel"}, "snippet": {}},
                    _search_item("def", channel=""),
                ]
            }
        )

    monkeypatch.setattr(youtube.urllib.request, "urlopen", fake_urlopen)

    candidates = _client(max_results=7).search("python", "beginner")

    assert [c.video_id for c in candidates] == ["abc", "def"]
    assert candidates[0].title == "Python Basics"
    assert candidates[0].url == "https://www.youtube.com/watch?v=abc"
    assert candidates[0].thumbnail.endswith("/abc/mqdefault.jpg")
    assert candidates[1].channel == ""

    params = urllib.parse.parse_qs(urllib.parse.urlparse(requested[0]).query)
    assert params["q"] == ["python beginner tutorial"]
    assert params["maxResults"] == ["7"]
    assert params["type"] == ["video"]
    assert params["safeSearch"] == ["strict"]
    assert params["key"] == ["test-key"]


def test_search_with_no_items_returns_empty_list(monkeypatch):
    monkeypatch.setattr(youtube.urllib.request, "urlopen", lambda url, timeout=None: _json_response({}))
    assert _client().search("obscure topic") == []


def test_stats_batches_ids_and_parses_counts(monkeypatch):
    batches = []

    def fake_urlopen(url, timeout=None):
        ids = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)["id"][0].split(",")
        batches.append(ids)
        return _json_response(
            {
                "items": [
                    {"id": video_id, "statistics": {"viewCount": "10", "likeCount": "2"}}
                    for video_id in ids
                ]
            }
        )

    monkeypatch.setattr(youtube.urllib.request, "urlopen", fake_urlopen)
    video_ids = [f"v{i}" for i in range(120)]

    stats = _client().stats(video_ids)

    assert [len(batch) for batch in batches] == [50, 50, 20]
    assert stats["v0"].views == 10
    assert stats["v0"].likes == 2
    assert stats["v119"].comments == 0


def test_missing_api_key_is_a_provider_error(monkeypatch):
    monkeypatch.delenv("YT_API_KEY", raising=False)
    client = youtube.YouTubeClient(retry_config=RetryConfig(max_attempts=1))

    with pytest.raises(ProviderError, match="YT_API_KEY"):
        client.search("python")


def test_transient_failures_are_retried(monkeypatch):
    calls = {"count": 0}

    def flaky_urlopen(url, timeout=None):
        calls["count"] += 1
        if calls["count"] == 1:
            raise URLError("connection reset")
        return _json_response({"items": [_search_item("abc")]})

    monkeypatch.setattr(youtube.urllib.request, "urlopen", flaky_urlopen)

    assert [c.video_id for c in _client().search("python")] == ["abc"]
    assert calls["count"] == 2


def test_quota_error_surfaces_as_provider_error(monkeypatch):
    def forbidden(url, timeout=None):
        raise HTTPError(url, 403, "quotaExceeded", {}, None)

    monkeypatch.setattr(youtube.urllib.request, "urlopen", forbidden)

    with pytest.raises(ProviderError, match="YouTube search"):
        _client().search("python")


def test_candidate_from_search_item_falls_back_to_default_thumbnail():
    candidate = youtube.candidate_from_search_item({"id": {"videoId": "xyz"}, "snippet": {}})

    assert candidate is not None
    assert candidate.title == "Untitled Video"
    assert candidate.thumbnail == "https://img.youtube.com/vi/xyz/hqdefault.jpg"
    assert youtube.candidate_from_search_item({"id": {}}) is None
