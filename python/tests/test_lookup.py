import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from unittest.mock import MagicMock

import pytest

from interview_redis.core.config import Settings
from interview_redis.core.dist_lock import RedisKeyLocks
from interview_redis.core.errors import InvalidArgument, LoadFailed, StoreUnavailable
from interview_redis.core.locks import LocalKeyLocks
from interview_redis.services.lookup import StampedeSafeLookup


class CountingLoader:
    """호출 횟수를 세는 가짜 DB 조회"""

    def __init__(self, value="Alice", delay=0.0, fail_times=0):
        self.value = value
        self.delay = delay
        self.fail_times = fail_times
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, key):
        with self._lock:
            self.calls += 1
            call_no = self.calls
        time.sleep(self.delay)
        if call_no <= self.fail_times:
            raise RuntimeError(f"db down ({key})")
        return self.value


def run_concurrently(fn, n):
    barrier = threading.Barrier(n)

    def task(_):
        barrier.wait()
        return fn()

    with ThreadPoolExecutor(max_workers=n) as ex:
        return list(ex.map(task, range(n)))


class TestStampedeSafeLookup:
    def test_hit_does_not_load(self, memory_store):
        memory_store.set("user:1", "Alice")
        lookup = StampedeSafeLookup(memory_store)
        load = CountingLoader("Bob")
        assert lookup.get("user:1", load) == "Alice"
        assert load.calls == 0

    def test_miss_loads_and_populates(self, memory_store):
        lookup = StampedeSafeLookup(memory_store)
        load = CountingLoader(["aaa", "bbbb"])
        assert lookup.get("test", load) == ["aaa", "bbbb"]
        assert memory_store.get("test") == (["aaa", "bbbb"], True)

    def test_repeated_gets_never_reload(self, memory_store):
        lookup = StampedeSafeLookup(memory_store)
        load = CountingLoader()
        results = [lookup.get("user:1", load) for _ in range(5)]
        assert results == ["Alice"] * 5
        assert load.calls == 1

    def test_fifty_concurrent_cold_reads_load_once(self, memory_store):
        lookup = StampedeSafeLookup(memory_store)
        load = CountingLoader("Alice", delay=0.2)

        start = time.perf_counter()
        results = run_concurrently(lambda: lookup.get("user:1", load), 50)
        elapsed = time.perf_counter() - start

        assert results == ["Alice"] * 50
        assert load.calls == 1
        assert elapsed < 1.5
        assert len(lookup.locks) == 0

    def test_cold_reads_against_redis_load_once(self, redis_store):
        lookup = StampedeSafeLookup(redis_store)
        load = CountingLoader({"id": 1, "name": "Alice"}, delay=0.1)
        results = run_concurrently(lambda: lookup.get("user:1", load), 20)
        assert all(r == {"id": 1, "name": "Alice"} for r in results)
        assert load.calls == 1

    def test_loader_and_waiters_see_same_stored_form(self, redis_store):
        lookup = StampedeSafeLookup(redis_store)
        load = CountingLoader(("Alice", date(2024, 5, 4)), delay=0.1)

        results = run_concurrently(lambda: lookup.get("user:1", load), 5)

        assert results == [["Alice", "2024-05-04"]] * 5
        assert load.calls == 1
        assert lookup.get("user:1", load) == ["Alice", "2024-05-04"]

    def test_different_keys_load_in_parallel(self, memory_store):
        lookup = StampedeSafeLookup(memory_store)
        load_a = CountingLoader("A", delay=0.3)
        load_b = CountingLoader("B", delay=0.3)

        start = time.perf_counter()
        with ThreadPoolExecutor(max_workers=2) as ex:
            fa = ex.submit(lookup.get, "a", load_a)
            fb = ex.submit(lookup.get, "b", load_b)
            assert (fa.result(), fb.result()) == ("A", "B")
        elapsed = time.perf_counter() - start

        assert elapsed < 0.55
        assert load_a.calls == load_b.calls == 1

    def test_load_failure_propagates_and_is_not_cached(self, memory_store):
        lookup = StampedeSafeLookup(memory_store)
        load = CountingLoader(fail_times=1)

        with pytest.raises(LoadFailed) as exc_info:
            lookup.get("user:1", load)
        assert exc_info.value.key == "user:1"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert memory_store.get("user:1") == (None, False)
        assert len(lookup.locks) == 0

        assert lookup.get("user:1", load) == "Alice"
        assert load.calls == 2

    def test_failure_does_not_poison_waiters(self, memory_store):
        lookup = StampedeSafeLookup(memory_store)
        load = CountingLoader(delay=0.1, fail_times=1)

        def call():
            try:
                return lookup.get("user:1", load)
            except LoadFailed:
                return "failed"

        results = run_concurrently(call, 8)
        assert results.count("failed") == 1
        assert results.count("Alice") == 7
        assert load.calls == 2

    @pytest.mark.parametrize("bad", ["", None])
    def test_invalid_key(self, memory_store, bad):
        lookup = StampedeSafeLookup(memory_store)
        load = CountingLoader()
        with pytest.raises(InvalidArgument):
            lookup.get(bad, load)
        assert load.calls == 0

    def test_store_failure_on_read(self):
        store = MagicMock()
        store.get.side_effect = StoreUnavailable("down")
        lookup = StampedeSafeLookup(store)
        load = CountingLoader()
        with pytest.raises(StoreUnavailable):
            lookup.get("user:1", load)
        assert load.calls == 0

    def test_store_failure_on_populate_releases_lock(self):
        store = MagicMock()
        store.get.return_value = (None, False)
        store.set.side_effect = StoreUnavailable("down")
        lookup = StampedeSafeLookup(store)
        with pytest.raises(StoreUnavailable):
            lookup.get("user:1", CountingLoader())
        assert len(lookup.locks) == 0

    def test_metrics(self, memory_store):
        lookup = StampedeSafeLookup(memory_store)
        load = CountingLoader()
        for _ in range(3):
            lookup.get("user:1", load)

        metrics = lookup.get_metrics()
        assert metrics["hits"] == 2
        assert metrics["misses"] == 1
        assert metrics["loads"] == 1
        assert metrics["load_failures"] == 0
        assert metrics["total_requests"] == 3
        assert metrics["hit_rate_percent"] == 66.67

        lookup.reset_metrics()
        assert lookup.get_metrics()["total_requests"] == 0

    def test_ttl_with_jitter(self, memory_store):
        lookup = StampedeSafeLookup(memory_store, ttl=100, jitter_percent=10)
        lookup.get("user:1", CountingLoader())
        assert 89 <= memory_store.ttl("user:1") <= 110

    def test_expired_entry_starts_new_episode(self, memory_store):
        lookup = StampedeSafeLookup(memory_store)
        load = CountingLoader()
        lookup.get("user:1", load)
        memory_store.delete("user:1")
        lookup.get("user:1", load)
        assert load.calls == 2


class TestFromSettings:
    def test_process_scope(self, memory_store):
        lookup = StampedeSafeLookup.from_settings(memory_store, config=Settings(CACHE_TTL=30))
        assert isinstance(lookup.locks, LocalKeyLocks)
        assert lookup.ttl == 30

    def test_distributed_scope(self, redis_store, fake_redis):
        config = Settings(SINGLEFLIGHT_SCOPE="distributed", LOCK_TTL_MS=3000)
        lookup = StampedeSafeLookup.from_settings(redis_store, client=fake_redis, config=config)
        assert isinstance(lookup.locks, RedisKeyLocks)
        assert lookup.locks.ttl_ms == 3000

    def test_distributed_scope_coalesces_across_instances(self, redis_store, fake_redis):
        config = Settings(SINGLEFLIGHT_SCOPE="distributed", LOCK_RETRY_MS=10, LOCK_JITTER_MS=5)
        lookups = [StampedeSafeLookup.from_settings(redis_store, client=fake_redis, config=config)
                   for _ in range(2)]
        load = CountingLoader(delay=0.2)
        counter = iter(range(10))
        pick_lock = threading.Lock()

        def call():
            with pick_lock:
                lookup = lookups[next(counter) % 2]
            return lookup.get("user:1", load)

        results = run_concurrently(call, 10)
        assert results == ["Alice"] * 10
        assert load.calls == 1
        assert not fake_redis.exists("lock:singleflight:user:1")
