"""Global submission throttle: bounded sliding window with an injected clock.

`SlidingWindowCounter` is process-local. `RedisSlidingWindowCounter` shares the
window across API workers through a Redis sorted set and falls back to a local
window when Redis is unreachable.

Callers reserve a slot with `acquire()` before doing any work and hand it back
with `release(token)` when the submission is not persisted. The check and the
reservation happen in one step, so concurrent submissions cannot all slip into
an empty window.
"""
from __future__ import annotations

import logging
import math
import time
import uuid
from collections import deque
from typing import Callable

from stumpwatch.errors import Throttled

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class SlidingWindowCounter:
    """Refuses once more than `limit` hits landed within the last `window_s` seconds."""

    def __init__(self, *, limit: int, window_s: float, clock: Clock = time.monotonic):
        if limit < 0:
            raise ValueError("limit must be >= 0")
        if window_s <= 0:
            raise ValueError("window_s must be > 0")
        self.limit = limit
        self.window_s = float(window_s)
        self._clock = clock
        # Acquisition stops at limit + 1 live hits, so the deque never evicts.
        self._hits: deque[tuple[float, str]] = deque(maxlen=limit + 1)

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_s
        while self._hits and self._hits[0][0] <= cutoff:
            self._hits.popleft()

    def count(self) -> int:
        self._prune(self._clock())
        return len(self._hits)

    def try_acquire(self) -> str:
        """Prune, check and reserve in one synchronous step."""
        now = self._clock()
        self._prune(now)
        if len(self._hits) > self.limit:
            retry_after = max(1, math.ceil(self._hits[0][0] + self.window_s - now))
            raise Throttled(retry_after)
        token = uuid.uuid4().hex
        self._hits.append((now, token))
        return token

    async def acquire(self) -> str:
        return self.try_acquire()

    async def release(self, token: str) -> None:
        for hit in self._hits:
            if hit[1] == token:
                self._hits.remove(hit)
                return


class RedisSlidingWindowCounter:
    """Same contract as `SlidingWindowCounter`, shared through Redis."""

    def __init__(
        self,
        redis_client,
        *,
        limit: int,
        window_s: float,
        key: str = "stumpwatch:throttle:requests",
        clock: Clock = time.time,
    ):
        self._redis = redis_client
        self.limit = limit
        self.window_s = float(window_s)
        self.key = key
        self._clock = clock
        self._local = SlidingWindowCounter(limit=limit, window_s=window_s, clock=clock)
        self._local_tokens: set[str] = set()

    async def acquire(self) -> str:
        now = self._clock()
        member = uuid.uuid4().hex
        try:
            # MULTI/EXEC: prune, reserve and count without interleaving.
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(self.key, "-inf", now - self.window_s)
                pipe.zadd(self.key, {member: now})
                pipe.zcard(self.key)
                pipe.zrange(self.key, 0, 0, withscores=True)
                pipe.expire(self.key, int(math.ceil(self.window_s)) + 1)
                _, _, hits, oldest, _ = await pipe.execute()
        except Exception as e:
            logger.warning(f"Throttle redis reservation failed, using local window: {e}")
            token = await self._local.acquire()
            self._local_tokens.add(token)
            return token

        # `hits` includes the member just added.
        if int(hits) > self.limit + 1:
            await self._remove_member(member)
            oldest_ts = float(oldest[0][1]) if oldest else now
            raise Throttled(max(1, math.ceil(oldest_ts + self.window_s - now)))
        return member

    async def release(self, token: str) -> None:
        if token in self._local_tokens:
            self._local_tokens.discard(token)
            await self._local.release(token)
            return
        await self._remove_member(token)

    async def _remove_member(self, member: str) -> None:
        try:
            await self._redis.zrem(self.key, member)
        except Exception as e:
            logger.warning(f"Throttle redis release failed, slot expires with the window: {e}")


def build_request_throttle(settings) -> SlidingWindowCounter | RedisSlidingWindowCounter:
    """Throttle for the change-request intake, chosen by THROTTLE_BACKEND."""
    if settings.THROTTLE_BACKEND == "redis":
        import redis.asyncio as redis_asyncio

        client = redis_asyncio.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        return RedisSlidingWindowCounter(
            client,
            limit=settings.REQUEST_THROTTLE_LIMIT,
            window_s=settings.REQUEST_THROTTLE_WINDOW_S,
        )
    return SlidingWindowCounter(
        limit=settings.REQUEST_THROTTLE_LIMIT,
        window_s=settings.REQUEST_THROTTLE_WINDOW_S,
    )
