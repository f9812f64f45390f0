from __future__ import annotations

import asyncio

import pytest

from stumpwatch.errors import Throttled
from stumpwatch.throttle import RedisSlidingWindowCounter, SlidingWindowCounter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


async def _accept(counter, n: int) -> list[str]:
    return [await counter.acquire() for _ in range(n)]


def test_rejects_once_more_than_limit_in_window() -> None:
    clock = FakeClock()
    counter = SlidingWindowCounter(limit=10, window_s=60, clock=clock)
    asyncio.run(_accept(counter, 11))
    with pytest.raises(Throttled) as exc:
        asyncio.run(counter.acquire())
    assert 1 <= exc.value.retry_after <= 60


def test_window_slides_without_real_time() -> None:
    clock = FakeClock()
    counter = SlidingWindowCounter(limit=2, window_s=60, clock=clock)
    asyncio.run(_accept(counter, 3))
    with pytest.raises(Throttled):
        asyncio.run(counter.acquire())
    clock.now += 61
    assert counter.count() == 0
    asyncio.run(counter.acquire())


def test_retry_after_points_at_oldest_expiry() -> None:
    clock = FakeClock()
    counter = SlidingWindowCounter(limit=1, window_s=60, clock=clock)
    asyncio.run(_accept(counter, 1))
    clock.now += 20
    asyncio.run(_accept(counter, 1))
    clock.now += 5
    with pytest.raises(Throttled) as exc:
        asyncio.run(counter.acquire())
    assert exc.value.retry_after == 35


def test_memory_is_bounded() -> None:
    counter = SlidingWindowCounter(limit=3, window_s=60, clock=FakeClock())
    for _ in range(50):
        try:
            counter.try_acquire()
        except Throttled:
            pass
    assert counter.count() == 4


def test_released_slot_is_available_again() -> None:
    counter = SlidingWindowCounter(limit=0, window_s=60, clock=FakeClock())
    token = counter.try_acquire()
    with pytest.raises(Throttled):
        counter.try_acquire()
    asyncio.run(counter.release(token))
    assert counter.count() == 0
    counter.try_acquire()


def test_concurrent_acquires_respect_limit() -> None:
    counter = SlidingWindowCounter(limit=10, window_s=60, clock=FakeClock())

    async def burst():
        return await asyncio.gather(*(counter.acquire() for _ in range(30)), return_exceptions=True)

    results = asyncio.run(burst())
    assert sum(isinstance(r, str) for r in results) == 11
    assert sum(isinstance(r, Throttled) for r in results) == 19


class FakePipeline:
    """Queues commands and runs them back to back on `execute`, like MULTI/EXEC."""

    def __init__(self, redis):
        self._redis = redis
        self._calls = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self._calls.append((name, args, kwargs))
            return self

        return queue

    async def execute(self):
        results = []
        for name, args, kwargs in self._calls:
            results.append(await getattr(self._redis, name)(*args, **kwargs))
        self._calls = []
        return results


class FakeSortedSetRedis:
    """Just the sorted-set calls the shared throttle uses."""

    def __init__(self):
        self.sets: dict[str, dict[str, float]] = {}

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def zremrangebyscore(self, key, low, high):
        members = self.sets.setdefault(key, {})
        for member, score in list(members.items()):
            if score <= float(high):
                members.pop(member)

    async def zcard(self, key):
        return len(self.sets.get(key, {}))

    async def zrange(self, key, start, end, withscores=False):
        ordered = sorted(self.sets.get(key, {}).items(), key=lambda item: item[1])
        return ordered[start : end + 1]

    async def zadd(self, key, mapping):
        self.sets.setdefault(key, {}).update(mapping)

    async def zrem(self, key, member):
        self.sets.get(key, {}).pop(member, None)

    async def expire(self, key, seconds):
        return True


class DownRedis:
    def pipeline(self, transaction=True):
        raise ConnectionError("redis down")

    async def zrem(self, *args, **kwargs):
        raise ConnectionError("redis down")


def test_shared_window_counts_across_counters() -> None:
    clock = FakeClock()
    redis = FakeSortedSetRedis()
    api_a = RedisSlidingWindowCounter(redis, limit=2, window_s=60, clock=clock)
    api_b = RedisSlidingWindowCounter(redis, limit=2, window_s=60, clock=clock)

    asyncio.run(_accept(api_a, 2))
    asyncio.run(_accept(api_b, 1))
    with pytest.raises(Throttled) as exc:
        asyncio.run(api_a.acquire())
    assert exc.value.retry_after == 60
    # The refused reservation is taken back out of the shared set.
    assert len(redis.sets[api_a.key]) == 3

    clock.now += 61
    asyncio.run(api_b.acquire())


def test_shared_window_holds_under_concurrent_acquires() -> None:
    redis = FakeSortedSetRedis()
    counter = RedisSlidingWindowCounter(redis, limit=2, window_s=60, clock=FakeClock())

    async def burst():
        return await asyncio.gather(*(counter.acquire() for _ in range(10)), return_exceptions=True)

    results = asyncio.run(burst())
    assert sum(isinstance(r, str) for r in results) == 3
    assert len(redis.sets[counter.key]) == 3


def test_shared_release_frees_the_slot() -> None:
    redis = FakeSortedSetRedis()
    counter = RedisSlidingWindowCounter(redis, limit=0, window_s=60, clock=FakeClock())
    token = asyncio.run(counter.acquire())
    asyncio.run(counter.release(token))
    assert redis.sets[counter.key] == {}
    asyncio.run(counter.acquire())


def test_unreachable_redis_falls_back_to_local_window() -> None:
    counter = RedisSlidingWindowCounter(DownRedis(), limit=1, window_s=60, clock=FakeClock())
    tokens = asyncio.run(_accept(counter, 2))
    with pytest.raises(Throttled):
        asyncio.run(counter.acquire())
    asyncio.run(counter.release(tokens[0]))
    asyncio.run(counter.acquire())
