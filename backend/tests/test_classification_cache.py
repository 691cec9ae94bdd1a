"""
Tests for the classification cache: TTL, FIFO capacity bound, sweep, keys.
"""

import asyncio
import threading

import pytest

from routers.chat_orchestration.modes import ClassificationCache, cache_key
from routers.chat_orchestration.modes.cache import EMPTY_KEY


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _user(text):
    return {"role": "user", "parts": [{"type": "text", "text": text}]}


class TestGetSet:
    def test_set_then_get(self):
        cache = ClassificationCache()
        cache.set("k", "thinking")
        assert cache.get("k") == "thinking"

    def test_missing_key(self):
        assert ClassificationCache().get("nope") is None

    def test_only_concrete_modes(self):
        with pytest.raises(ValueError):
            ClassificationCache().set("k", "auto")

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            ClassificationCache(max_size=0)


class TestExpiry:
    def test_expired_entry_is_evicted_on_read(self):
        clock = FakeClock()
        cache = ClassificationCache(ttl=300, clock=clock)
        cache.set("k", "fast")

        clock.advance(299)
        assert cache.get("k") == "fast"

        clock.advance(2)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_set_refreshes_expiry(self):
        clock = FakeClock()
        cache = ClassificationCache(ttl=10, clock=clock)
        cache.set("k", "fast")
        clock.advance(8)
        cache.set("k", "thinking")
        clock.advance(8)
        assert cache.get("k") == "thinking"

    def test_sweep_removes_only_expired(self):
        clock = FakeClock()
        cache = ClassificationCache(ttl=10, clock=clock)
        cache.set("old", "fast")
        clock.advance(6)
        cache.set("new", "thinking")
        clock.advance(6)

        assert cache.sweep() == 1
        assert len(cache) == 1
        assert cache.get("new") == "thinking"


class TestCapacity:
    def test_never_exceeds_capacity(self):
        cache = ClassificationCache(max_size=3)
        for i in range(10):
            cache.set(f"k{i}", "fast")
            assert len(cache) <= 3

    def test_evicts_oldest_insertion_not_least_recently_used(self):
        cache = ClassificationCache(max_size=2)
        cache.set("a", "fast")
        cache.set("b", "fast")
        # Reading "a" must not protect it: eviction is FIFO
        assert cache.get("a") == "fast"
        cache.set("c", "thinking")

        assert cache.get("a") is None
        assert cache.get("b") == "fast"
        assert cache.get("c") == "thinking"

    def test_concurrent_sets_respect_bound(self):
        cache = ClassificationCache(max_size=50)

        def writer(offset):
            for i in range(200):
                cache.set(f"{offset}-{i}", "fast")
                cache.get(f"{offset}-{i // 2}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) <= 50


class TestSweepTask:
    def test_start_and_stop(self):
        async def run():
            clock = FakeClock()
            cache = ClassificationCache(ttl=1, sweep_interval=0.01, clock=clock)
            cache.set("k", "fast")
            clock.advance(5)
            cache.start()
            await asyncio.sleep(0.05)
            size = len(cache)
            await cache.stop()
            return size

        assert asyncio.run(run()) == 0


class TestCacheKey:
    def test_uses_latest_user_message_trimmed(self):
        history = [
            _user("first question"),
            {"role": "assistant", "parts": [{"type": "text", "text": "answer"}]},
            _user("  second question  "),
        ]
        assert cache_key(history) == cache_key([_user("second question")])
        assert cache_key(history) != cache_key([_user("first question")])

    def test_sentinel_without_user_message(self):
        assert cache_key([]) == EMPTY_KEY
        assert cache_key([{"role": "system", "parts": [{"type": "text", "text": "x"}]}]) == EMPTY_KEY

    def test_deterministic(self):
        assert cache_key([_user("same")]) == cache_key([_user("same")])
