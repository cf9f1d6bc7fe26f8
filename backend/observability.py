from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any


class InMemoryMetricsStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._request_outcomes: dict[str, int] = defaultdict(int)
        self._generation_status_events: dict[str, int] = defaultdict(int)
        self._lock_events: dict[str, int] = defaultdict(int)
        self._degraded_videos = 0
        self._generation_latency = {"count": 0.0, "sum_ms": 0.0, "max_ms": 0.0}
        # Buckets: 1s, 5s, 10s, 30s, 60s, 2m, 5m, 10m, +Inf
        self._latency_buckets_def = [1000, 5000, 10000, 30000, 60000, 120000, 300000, 600000, float("inf")]
        self._generation_latency_buckets: dict[float, int] = {b: 0 for b in self._latency_buckets_def}

    def reset(self) -> None:
        with self._lock:
            self._request_outcomes.clear()
            self._generation_status_events.clear()
            self._lock_events.clear()
            self._degraded_videos = 0
            self._generation_latency = {"count": 0.0, "sum_ms": 0.0, "max_ms": 0.0}
            self._generation_latency_buckets = {b: 0 for b in self._latency_buckets_def}

    def increment_request_outcome(self, status: str) -> None:
        normalized_status = (status or "unknown").strip() or "unknown"
        with self._lock:
            self._request_outcomes[normalized_status] += 1

    def increment_generation_status(self, status: str) -> None:
        normalized_status = (status or "unknown").strip() or "unknown"
        with self._lock:
            self._generation_status_events[normalized_status] += 1

    def increment_lock_event(self, event: str) -> None:
        with self._lock:
            self._lock_events[event] += 1

    def add_degraded_videos(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._degraded_videos += count

    def observe_generation_latency(self, duration_ms: float) -> None:
        duration_ms = max(0.0, duration_ms)
        with self._lock:
            metric = self._generation_latency
            metric["count"] += 1
            metric["sum_ms"] += duration_ms
            metric["max_ms"] = max(metric["max_ms"], duration_ms)
            for bucket in self._latency_buckets_def:
                if duration_ms <= bucket:
                    self._generation_latency_buckets[bucket] += 1

    def snapshot(self, generation_logs: dict[str, int] | None = None) -> dict[str, Any]:
        with self._lock:
            count = self._generation_latency["count"]
            avg_ms = (self._generation_latency["sum_ms"] / count) if count > 0 else 0.0
            return {
                "generationLogs": generation_logs or {},
                "requestOutcomes": dict(self._request_outcomes),
                "generationStatusEvents": dict(self._generation_status_events),
                "lockEvents": dict(self._lock_events),
                "degradedVideos": self._degraded_videos,
                "generationLatencyMs": {
                    "count": int(count),
                    "sumMs": round(self._generation_latency["sum_ms"], 2),
                    "avgMs": round(avg_ms, 2),
                    "maxMs": round(self._generation_latency["max_ms"], 2),
                },
                "generationLatencyBuckets": {
                    _bucket_label(bucket): count for bucket, count in self._generation_latency_buckets.items()
                },
            }


def _bucket_label(bucket: float) -> str:
    return "+Inf" if bucket == float("inf") else str(int(bucket))


def _escape_label(value: str) -> str:
    return value.replace("\\", r"\\").replace('"', r'\"')


def render_prometheus_metrics(snapshot: dict[str, Any]) -> str:
    lines: list[str] = []

    lines.append("# HELP learnhub_generation_logs Number of generation log rows in each status.")
    lines.append("# TYPE learnhub_generation_logs gauge")
    for status, count in sorted((snapshot.get("generationLogs") or {}).items()):
        lines.append(f'learnhub_generation_logs{{status="{_escape_label(str(status))}"}} {int(count)}')

    lines.append("# HELP learnhub_request_outcomes_total Learning path requests by response status.")
    lines.append("# TYPE learnhub_request_outcomes_total counter")
    for status, count in sorted((snapshot.get("requestOutcomes") or {}).items()):
        lines.append(f'learnhub_request_outcomes_total{{status="{_escape_label(str(status))}"}} {int(count)}')

    lines.append("# HELP learnhub_generation_status_events_total Observed generation status transitions.")
    lines.append("# TYPE learnhub_generation_status_events_total counter")
    for status, count in sorted((snapshot.get("generationStatusEvents") or {}).items()):
        lines.append(
            f'learnhub_generation_status_events_total{{status="{_escape_label(str(status))}"}} {int(count)}'
        )

    lines.append("# HELP learnhub_lock_events_total Generation lock conflicts and stale takeovers.")
    lines.append("# TYPE learnhub_lock_events_total counter")
    for event, count in sorted((snapshot.get("lockEvents") or {}).items()):
        lines.append(f'learnhub_lock_events_total{{event="{_escape_label(str(event))}"}} {int(count)}')

    lines.append("# HELP learnhub_degraded_videos_total Videos stored with templated summary or quiz.")
    lines.append("# TYPE learnhub_degraded_videos_total counter")
    lines.append(f"learnhub_degraded_videos_total {int(snapshot.get('degradedVideos') or 0)}")

    latency = snapshot.get("generationLatencyMs") or {}
    lines.append("# HELP learnhub_generation_latency_ms Generation run latency histogram in milliseconds.")
    lines.append("# TYPE learnhub_generation_latency_ms histogram")
    for le, count in (snapshot.get("generationLatencyBuckets") or {}).items():
        lines.append(f'learnhub_generation_latency_ms_bucket{{le="{le}"}} {int(count)}')
    lines.append(f"learnhub_generation_latency_ms_sum {float(latency.get('sumMs') or 0.0)}")
    lines.append(f"learnhub_generation_latency_ms_count {int(latency.get('count') or 0)}")

    return "\n".join(lines) + "\n"


METRICS = InMemoryMetricsStore()
