from __future__ import annotations

import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
sys.path.append(str(ROOT))

from backend.generation_lock import (
    AlreadyInFlight,
    GenerationLock,
    InMemoryLockStore,
    LeaseSuperseded,
    LockAcquired,
)
from backend.runtime_config import lock_ttl_seconds
from pipeline.errors import StoreError
from pipeline.normalize import TopicPairKey


KEY = TopicPairKey("python", "beginner")
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def test_first_acquire_wins_and_second_sees_in_flight():
    clock = FakeClock(T0)
    lock = GenerationLock(InMemoryLockStore(), ttl_seconds=900, clock=clock)

    first = lock.try_acquire(KEY)
    clock.advance(minutes=3)
    second = lock.try_acquire(KEY)

    assert isinstance(first, LockAcquired)
    assert first.took_over_stale is False
    assert isinstance(second, AlreadyInFlight)
    assert second.started_at == T0
    assert second.minutes_elapsed(clock()) == 3


def test_concurrent_acquire_has_exactly_one_winner():
    lock = GenerationLock(InMemoryLockStore(), ttl_seconds=900)
    barrier = threading.Barrier(16)
    results: list = []
    results_lock = threading.Lock()

    def contender() -> None:
        barrier.wait()
        result = lock.try_acquire(KEY)
        with results_lock:
            results.append(result)

    threads = [threading.Thread(target=contender) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    winners = [result for result in results if isinstance(result, LockAcquired)]
    assert len(winners) == 1
    assert sum(isinstance(result, AlreadyInFlight) for result in results) == 15


def test_release_is_idempotent_and_frees_the_key():
    lock = GenerationLock(InMemoryLockStore(), ttl_seconds=900)
    acquired = lock.try_acquire(KEY)

    lock.release(KEY, acquired.lease_id)
    lock.release(KEY, acquired.lease_id)
    lock.release(KEY)

    assert isinstance(lock.try_acquire(KEY), LockAcquired)


def test_keys_are_independent():
    lock = GenerationLock(InMemoryLockStore(), ttl_seconds=900)

    assert isinstance(lock.try_acquire(KEY), LockAcquired)
    assert isinstance(lock.try_acquire(TopicPairKey("python", "advanced")), LockAcquired)
    assert isinstance(lock.try_acquire(TopicPairKey("react", "beginner")), LockAcquired)


def test_stale_lease_is_taken_over():
    clock = FakeClock(T0)
    lock = GenerationLock(InMemoryLockStore(), ttl_seconds=600, clock=clock)
    crashed = lock.try_acquire(KEY)

    clock.advance(minutes=9)
    assert isinstance(lock.try_acquire(KEY), AlreadyInFlight)

    clock.advance(minutes=2)
    takeover = lock.try_acquire(KEY)

    assert isinstance(takeover, LockAcquired)
    assert takeover.took_over_stale is True
    assert takeover.lease_id != crashed.lease_id


def test_superseded_holder_cannot_release_new_lease():
    clock = FakeClock(T0)
    store = InMemoryLockStore()
    lock = GenerationLock(store, ttl_seconds=60, clock=clock)
    crashed = lock.try_acquire(KEY)
    clock.advance(minutes=5)
    takeover = lock.try_acquire(KEY)

    lock.release(KEY, crashed.lease_id)

    assert isinstance(lock.try_acquire(KEY), AlreadyInFlight)
    lock.release(KEY, takeover.lease_id)
    assert isinstance(lock.try_acquire(KEY), LockAcquired)


def test_stale_leases_lists_expired_keys_only():
    clock = FakeClock(T0)
    lock = GenerationLock(InMemoryLockStore(), ttl_seconds=60, clock=clock)
    lock.try_acquire(KEY)
    clock.advance(minutes=5)
    lock.try_acquire(TopicPairKey("react", "beginner"))

    assert lock.stale_leases() == [KEY]


def test_store_that_never_reports_a_holder_raises_store_error():
    class VanishingStore(InMemoryLockStore):
        def claim_generation_lock(self, *args, **kwargs):
            return None

    lock = GenerationLock(VanishingStore(), ttl_seconds=60)

    with pytest.raises(StoreError, match="python \\+ beginner"):
        lock.try_acquire(KEY)


def test_minutes_elapsed_never_negative():
    in_flight = AlreadyInFlight(key=KEY, started_at=T0)
    assert in_flight.minutes_elapsed(T0 - timedelta(minutes=1)) == 0
    assert in_flight.minutes_elapsed(T0 + timedelta(seconds=179)) == 2


def test_lock_ttl_reads_environment(monkeypatch):
    monkeypatch.setenv("LH_LOCK_TTL_SEC", "120")
    assert lock_ttl_seconds() == 120
    assert GenerationLock(InMemoryLockStore()).ttl == timedelta(seconds=120)

    monkeypatch.setenv("LH_LOCK_TTL_SEC", "0")
    with pytest.raises(RuntimeError, match="positive integer"):
        lock_ttl_seconds()


def test_renew_restarts_the_lease_clock():
    clock = FakeClock(T0)
    lock = GenerationLock(InMemoryLockStore(), ttl_seconds=600, clock=clock)
    acquired = lock.try_acquire(KEY)

    clock.advance(minutes=9)
    lock.renew(KEY, acquired.lease_id)
    clock.advance(minutes=9)

    in_flight = lock.try_acquire(KEY)
    assert isinstance(in_flight, AlreadyInFlight)
    assert in_flight.started_at == T0 + timedelta(minutes=9)


def test_renew_after_takeover_raises_superseded():
    clock = FakeClock(T0)
    lock = GenerationLock(InMemoryLockStore(), ttl_seconds=60, clock=clock)
    crashed = lock.try_acquire(KEY)
    clock.advance(minutes=5)
    takeover = lock.try_acquire(KEY)

    with pytest.raises(LeaseSuperseded, match="python \\+ beginner"):
        lock.renew(KEY, crashed.lease_id)

    lock.renew(KEY, takeover.lease_id)


def test_renew_after_release_raises_superseded():
    lock = GenerationLock(InMemoryLockStore(), ttl_seconds=60)
    acquired = lock.try_acquire(KEY)
    lock.release(KEY, acquired.lease_id)

    with pytest.raises(LeaseSuperseded):
        lock.renew(KEY, acquired.lease_id)
