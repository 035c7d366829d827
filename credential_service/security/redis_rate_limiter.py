"""Redis-backed sliding window rate limiter shared by every service replica."""

from __future__ import annotations

import logging
import time
from typing import Final

from redis import Redis
from redis.exceptions import ResponseError

logger = logging.getLogger(__name__)


def _scripting_unsupported(exc: ResponseError) -> bool:
    # Redis, Valkey and fakeredis word this as "unknown command 'evalsha'" or with backticks.
    return "unknown command" in str(exc).lower()


class RedisSlidingWindowRateLimiter:
    """Sliding window limiter stored in one Redis sorted set per key.

    Attempts are sorted-set members scored by their millisecond timestamp. A
    Lua script trims, counts and records in one round trip; servers without
    scripting get a two-step pipelined path instead, which may admit a few
    extra attempts under heavy concurrency.
    """

    _WINDOW_SCRIPT: Final[str] = """
    local attempts = KEYS[1]
    local window_ms = tonumber(ARGV[1])
    local limit = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])
    local member = ARGV[4]

    redis.call('ZREMRANGEBYSCORE', attempts, '-inf', now_ms - window_ms)
    if redis.call('ZCARD', attempts) >= limit then
        return 0
    end
    redis.call('ZADD', attempts, now_ms, member)
    redis.call('PEXPIRE', attempts, window_ms)
    return 1
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "credential-rate",
    ) -> None:
        self._client = client
        self._max_requests = max_requests
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix
        self._script = client.register_script(self._WINDOW_SCRIPT)
        self._use_script = True

    def _redis_key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}"

    def _member(self, now_ms: int) -> str:
        seq = self._client.incr(f"{self._key_prefix}:seq")
        return f"{now_ms}:{seq}"

    def allow(self, key: str) -> bool:
        """Record an attempt and return ``True`` when it is within the shared limit."""
        now_ms = int(time.time() * 1000)
        redis_key = self._redis_key(key)
        member = self._member(now_ms)
        if self._use_script:
            try:
                result = self._script(
                    keys=[redis_key],
                    args=[self._window_ms, self._max_requests, now_ms, member],
                )
                return int(result) == 1
            except ResponseError as exc:
                if not _scripting_unsupported(exc):
                    raise
                logger.warning("redis scripting unavailable, using pipelined rate limiting: %s", exc)
                self._use_script = False
        return self._allow_pipelined(redis_key, now_ms, member)

    def reset(self, key: str) -> None:
        """Drop the attempt window for ``key``."""
        self._client.delete(self._redis_key(key))

    def _allow_pipelined(self, redis_key: str, now_ms: int, member: str) -> bool:
        with self._client.pipeline() as pipe:
            pipe.zremrangebyscore(redis_key, "-inf", now_ms - self._window_ms)
            pipe.zcard(redis_key)
            _, count = pipe.execute()
        if count >= self._max_requests:
            return False
        with self._client.pipeline() as pipe:
            pipe.zadd(redis_key, {member: now_ms})
            pipe.pexpire(redis_key, self._window_ms)
            pipe.execute()
        return True
