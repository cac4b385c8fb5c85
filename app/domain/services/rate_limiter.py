"""
Rate Limiter
Fixed-window request counters with a pluggable backing store

The in-memory store is correct for a single process only. Deployments with
more than one API process must use the Redis store so every process shares
the same counters.
"""
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import redis.asyncio as redis
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class RateLimitResult(BaseModel):
    """Outcome of one rate limit check"""
    allowed: bool
    remaining: int
    reset_at: int  # epoch milliseconds when the current window ends

    def retry_after_seconds(self, now_ms: Optional[int] = None) -> int:
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        return max(1, -(-(self.reset_at - now_ms) // 1000))


class CounterStore(ABC):
    """Backing store for windowed counters"""

    @abstractmethod
    async def increment(self, key: str, window_ms: int) -> Tuple[int, int]:
        """
        Count one hit against key.

        Returns:
            (count in the current window including this hit, window reset time in epoch ms)
        """
        pass

    async def close(self) -> None:
        pass


class InMemoryCounterStore(CounterStore):
    """Per-process counters; windows reset lazily on the next hit after expiry"""

    def __init__(self, clock=None):
        self._entries: Dict[str, Tuple[int, int]] = {}
        self._clock = clock or (lambda: int(time.time() * 1000))

    async def increment(self, key: str, window_ms: int) -> Tuple[int, int]:
        now = self._clock()
        count, reset_at = self._entries.get(key, (0, 0))

        if reset_at <= now:
            count, reset_at = 0, now + window_ms

        count += 1
        self._entries[key] = (count, reset_at)
        return count, reset_at

    def clear(self) -> None:
        self._entries.clear()


class RedisCounterStore(CounterStore):
    """Counters shared across processes, one Redis key per window"""

    KEY_PREFIX = "rate_limit:"

    def __init__(self, redis_client: redis.Redis):
        self._redis = redis_client

    @classmethod
    async def from_url(cls, redis_url: str) -> "RedisCounterStore":
        client = await redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        return cls(client)

    async def increment(self, key: str, window_ms: int) -> Tuple[int, int]:
        redis_key = f"{self.KEY_PREFIX}{key}"
        count = await self._redis.incr(redis_key)

        if count == 1:
            await self._redis.pexpire(redis_key, window_ms)
            ttl_ms = window_ms
        else:
            ttl_ms = await self._redis.pttl(redis_key)
            if ttl_ms is None or ttl_ms < 0:
                # Key lost its expiry (e.g. crash between INCR and PEXPIRE)
                await self._redis.pexpire(redis_key, window_ms)
                ttl_ms = window_ms

        return int(count), int(time.time() * 1000) + int(ttl_ms)

    async def close(self) -> None:
        await self._redis.close()


class RateLimiter:
    """Checks hits for a key against a limit within a fixed window"""

    def __init__(self, store: CounterStore):
        self.store = store

    async def check(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        count, reset_at = await self.store.increment(key, window_ms)
        allowed = count <= limit

        if not allowed:
            logger.warning(f"Rate limit exceeded for {key}: {count}/{limit}")

        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, limit - count),
            reset_at=reset_at,
        )
