from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Protocol, Union

from backend.runtime_config import lock_ttl_seconds
from pipeline.errors import LearnHubError, StoreError
from pipeline.normalize import TopicPairKey


LOGGER = logging.getLogger("learnhub.lock")

_MAX_CLAIM_ATTEMPTS = 3


@dataclass(frozen=True)
class LockAcquired:
    key: TopicPairKey
    lease_id: str
    acquired_at: datetime
    took_over_stale: bool = False


@dataclass(frozen=True)
class AlreadyInFlight:
    key: TopicPairKey
    started_at: datetime

    def minutes_elapsed(self, now: Optional[datetime] = None) -> int:
        current = now or datetime.now(timezone.utc)
        return max(0, int((current - self.started_at).total_seconds() // 60))


LockResult = Union[LockAcquired, AlreadyInFlight]


class LeaseSuperseded(LearnHubError):
    """The run's lease was taken over after it went stale; the run must not generate."""

    error_type = "superseded"


class LockStore(Protocol):
    def claim_generation_lock(
        self,
        search_term: str,
        learning_goal: str,
        lease_id: str,
        acquired_at: datetime,
        stale_before: datetime,
    ) -> Optional[Dict[str, Any]]: ...

    def delete_generation_lock(self, search_term: str, learning_goal: str, lease_id: Optional[str] = None) -> bool: ...

    def renew_generation_lock(
        self,
        search_term: str,
        learning_goal: str,
        lease_id: str,
        acquired_at: datetime,
    ) -> Optional[Dict[str, Any]]: ...


class InMemoryLockStore:
    """Process-local lock table with the same claim semantics as the Postgres store."""

    def __init__(self) -> None:
        self._leases: dict[tuple[str, str], Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def claim_generation_lock(
        self,
        search_term: str,
        learning_goal: str,
        lease_id: str,
        acquired_at: datetime,
        stale_before: datetime,
    ) -> Optional[Dict[str, Any]]:
        cache_key = (search_term, learning_goal)
        with self._lock:
            current = self._leases.get(cache_key)
            if current is not None and current["acquired_at"] >= stale_before:
                return {**current, "took_over_stale": False}
            self._leases[cache_key] = {
                "search_term": search_term,
                "learning_goal": learning_goal,
                "lease_id": lease_id,
                "acquired_at": acquired_at,
            }
            return {**self._leases[cache_key], "took_over_stale": current is not None}

    def delete_generation_lock(self, search_term: str, learning_goal: str, lease_id: Optional[str] = None) -> bool:
        cache_key = (search_term, learning_goal)
        with self._lock:
            current = self._leases.get(cache_key)
            if current is None:
                return False
            if lease_id is not None and current["lease_id"] != lease_id:
                return False
            self._leases.pop(cache_key, None)
            return True

    def renew_generation_lock(
        self,
        search_term: str,
        learning_goal: str,
        lease_id: str,
        acquired_at: datetime,
    ) -> Optional[Dict[str, Any]]:
        cache_key = (search_term, learning_goal)
        with self._lock:
            current = self._leases.get(cache_key)
            if current is None or current["lease_id"] != lease_id:
                return None
            current["acquired_at"] = acquired_at
            return dict(current)

    def fetch_stale_generation_locks(self, stale_before: datetime, limit: int = 50) -> list[Dict[str, Any]]:
        with self._lock:
            stale = [dict(row) for row in self._leases.values() if row["acquired_at"] < stale_before]
        stale.sort(key=lambda row: row["acquired_at"])
        return stale[:limit]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GenerationLock:
    """Lease-based mutual exclusion for generation runs, one lease per topic key.

    A lease older than ``ttl_seconds`` belongs to a run that died without
    releasing; the next ``try_acquire`` takes it over.
    """

    def __init__(
        self,
        store: LockStore,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else lock_ttl_seconds())
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def try_acquire(self, key: TopicPairKey) -> LockResult:
        for _ in range(_MAX_CLAIM_ATTEMPTS):
            now = self._clock()
            lease_id = str(uuid.uuid4())
            row = self._store.claim_generation_lock(
                key.search_term,
                key.learning_goal,
                lease_id,
                now,
                now - self._ttl,
            )
            if row is None:
                continue
            if row["lease_id"] == lease_id:
                took_over = bool(row.get("took_over_stale"))
                LOGGER.info(
                    "lock.acquired",
                    extra={"search_term": key.search_term, "learning_goal": key.learning_goal, "lease_id": lease_id},
                )
                return LockAcquired(key=key, lease_id=lease_id, acquired_at=row["acquired_at"], took_over_stale=took_over)
            LOGGER.info(
                "lock.conflict",
                extra={"search_term": key.search_term, "learning_goal": key.learning_goal, "lease_id": row["lease_id"]},
            )
            return AlreadyInFlight(key=key, started_at=row["acquired_at"])
        raise StoreError(f"Could not claim generation lock for {key} after {_MAX_CLAIM_ATTEMPTS} attempts.")

    def release(self, key: TopicPairKey, lease_id: Optional[str] = None) -> None:
        """Drop the lease for ``key``. Releasing an absent or superseded lease is a no-op."""
        removed = self._store.delete_generation_lock(key.search_term, key.learning_goal, lease_id)
        LOGGER.info(
            "lock.released",
            extra={
                "search_term": key.search_term,
                "learning_goal": key.learning_goal,
                "lease_id": lease_id,
                "status": "removed" if removed else "absent",
            },
        )

    def renew(self, key: TopicPairKey, lease_id: str) -> None:
        """Restart the TTL of a held lease.

        Raises:
            LeaseSuperseded: another caller took the key over, or it was released
        """
        row = self._store.renew_generation_lock(key.search_term, key.learning_goal, lease_id, self._clock())
        if row is None:
            LOGGER.warning(
                "lock.superseded",
                extra={"search_term": key.search_term, "learning_goal": key.learning_goal, "lease_id": lease_id},
            )
            raise LeaseSuperseded(f"Generation lease for {key} was superseded by another request.")
        LOGGER.info(
            "lock.renewed",
            extra={"search_term": key.search_term, "learning_goal": key.learning_goal, "lease_id": lease_id},
        )

    def stale_leases(self, limit: int = 50) -> list[TopicPairKey]:
        fetch_stale = getattr(self._store, "fetch_stale_generation_locks", None)
        if not callable(fetch_stale):
            return []
        rows = fetch_stale(self._clock() - self._ttl, limit)
        return [TopicPairKey(row["search_term"], row["learning_goal"]) for row in rows]
