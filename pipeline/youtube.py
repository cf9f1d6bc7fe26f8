#!/usr/bin/env python3
"""YouTube Data API v3 search and statistics providers."""

from __future__ import annotations

import json
import logging
import os
import urllib.parse
import urllib.request
from typing import Any, Dict, List, Optional, Sequence

from pipeline.errors import ProviderError
from pipeline.models import VideoCandidate, VideoStats
from pipeline.retry_utils import (
    MaxRetriesExceeded,
    NonRetryableError,
    RetryConfig,
    retry_config_from_env,
    with_retry,
)


LOGGER = logging.getLogger("learnhub.youtube")

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"
STATS_BATCH_SIZE = 50


def _safe_int(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def _best_thumbnail(snippet: Dict[str, Any]) -> str:
    thumbnails = snippet.get("thumbnails") or {}
    for size in ("high", "medium", "default"):
        url = (thumbnails.get(size) or {}).get("url")
        if url:
            return url
    return ""


def candidate_from_search_item(item: Dict[str, Any]) -> Optional[VideoCandidate]:
    video_id = (item.get("id") or {}).get("videoId")
    if not isinstance(video_id, str) or not video_id.strip():
        return None
    snippet = item.get("snippet") or {}
    return VideoCandidate(
        video_id=video_id,
        title=snippet.get("title") or "Untitled Video",
        url=f"https://www.youtube.com/watch?v={video_id}",
        channel=snippet.get("channelTitle") or "",
        thumbnail=_best_thumbnail(snippet) or f"https://img.youtube.com/vi/{video_id}/hqdefault.jpg",
        description=snippet.get("description") or "",
        published_at=snippet.get("publishedAt"),
    )


class YouTubeClient:
    """Thin urllib client for the two YouTube endpoints generation needs.

    Transient failures (network, 429, 5xx) are retried with backoff; anything
    left over is raised as ``ProviderError``.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        max_results: int = 10,
        timeout: int = 30,
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("YT_API_KEY", "")
        self.max_results = max_results
        self.timeout = timeout
        self.retry_config = retry_config or retry_config_from_env()

    def _get_json(self, endpoint: str, params: Dict[str, Any], operation_name: str) -> Dict[str, Any]:
        if not self.api_key:
            raise ProviderError("YT_API_KEY is not configured.")

        query = urllib.parse.urlencode({**params, "key": self.api_key})
        url = f"{YOUTUBE_API_BASE}/{endpoint}?{query}"

        def make_request() -> Dict[str, Any]:
            with urllib.request.urlopen(url, timeout=self.timeout) as resp:
                return json.loads(resp.read().decode("utf-8"))

        try:
            return with_retry(make_request, config=self.retry_config, operation_name=operation_name)
        except (NonRetryableError, MaxRetriesExceeded) as exc:
            raise ProviderError(str(exc)) from exc

    def search(self, search_term: str, learning_goal: str = "") -> List[VideoCandidate]:
        query = " ".join(part for part in (search_term, learning_goal, "tutorial") if part)
        payload = self._get_json(
            "search",
            {
                "part": "snippet",
                "type": "video",
                "q": query,
                "maxResults": self.max_results,
                "order": "relevance",
                "safeSearch": "strict",
                "videoEmbeddable": "true",
            },
            operation_name="YouTube search",
        )
        candidates: List[VideoCandidate] = []
        seen: set[str] = set()
        for item in payload.get("items") or []:
            candidate = candidate_from_search_item(item)
            if candidate is None or candidate.video_id in seen:
                continue
            seen.add(candidate.video_id)
            candidates.append(candidate)
        LOGGER.info("youtube.search", extra={"query": query, "result_count": len(candidates)})
        return candidates

    def stats(self, video_ids: Sequence[str]) -> Dict[str, VideoStats]:
        results: Dict[str, VideoStats] = {}
        ids = [video_id for video_id in video_ids if video_id]
        for start in range(0, len(ids), STATS_BATCH_SIZE):
            batch = ids[start : start + STATS_BATCH_SIZE]
            payload = self._get_json(
                "videos",
                {"part": "statistics", "id": ",".join(batch)},
                operation_name="YouTube statistics",
            )
            for item in payload.get("items") or []:
                video_id = item.get("id")
                if not isinstance(video_id, str):
                    continue
                statistics = item.get("statistics") or {}
                results[video_id] = VideoStats(
                    views=_safe_int(statistics.get("viewCount")),
                    likes=_safe_int(statistics.get("likeCount")),
                    comments=_safe_int(statistics.get("commentCount")),
                )
        return results
