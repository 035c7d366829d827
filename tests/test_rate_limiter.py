"""Tests for the in-memory and Redis-backed sliding window rate limiters."""

from __future__ import annotations

import time

import fakeredis
import pytest
from redis.exceptions import ResponseError

from credential_service.security.rate_limiter import SlidingWindowRateLimiter
from credential_service.security.redis_rate_limiter import RedisSlidingWindowRateLimiter


class TickingClock:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return client


def test_memory_limiter_blocks_excess_and_recovers():
    clock = TickingClock()
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)

    assert limiter.allow("login:alice@example.com")
    assert limiter.allow("login:alice@example.com")
    assert not limiter.allow("login:alice@example.com")
    assert limiter.allow("login:bob@example.com")

    clock.value += 60
    assert limiter.allow("login:alice@example.com")


def test_memory_limiter_reset_clears_window():
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=TickingClock())
    assert limiter.allow("login:alice@example.com")
    assert not limiter.allow("login:alice@example.com")

    limiter.reset("login:alice@example.com")
    assert limiter.allow("login:alice@example.com")


def test_redis_rate_limiter_allows_within_threshold(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=3, window_seconds=1, key_prefix="test"
    )
    key = "forgot:alice@example.com"
    assert limiter.allow(key)
    assert limiter.allow(key)
    assert limiter.allow(key)


def test_redis_rate_limiter_blocks_excess(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=2, window_seconds=1, key_prefix="test"
    )
    key = "forgot:alice@example.com"
    assert limiter.allow(key)
    assert limiter.allow(key)
    assert not limiter.allow(key)


def test_redis_rate_limiter_reset(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=1, window_seconds=60, key_prefix="test"
    )
    key = "login:alice@example.com"
    assert limiter.allow(key)
    assert not limiter.allow(key)

    limiter.reset(key)
    assert limiter.allow(key)
    assert not redis_client.exists("test:login:bob@example.com")


def test_redis_rate_limiter_expires_entries(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=1, window_seconds=1, key_prefix="test"
    )
    key = "register:alice@example.com"
    assert limiter.allow(key)
    assert not limiter.allow(key)
    time.sleep(1.1)
    assert limiter.allow(key)


class ScriptlessRedis:
    """Wrap a fake client so that every script invocation fails like a server without Lua."""

    def __init__(self, client, message: str) -> None:
        self._client = client
        self._message = message

    def register_script(self, script: str):
        def run(keys, args):
            raise ResponseError(self._message)

        return run

    def __getattr__(self, name: str):
        return getattr(self._client, name)


@pytest.mark.parametrize(
    "message",
    [
        "unknown command 'evalsha', with args beginning with: ",
        "ERR unknown command `evalsha`, with args beginning with: ",
    ],
)
def test_redis_rate_limiter_works_without_scripting(redis_client, message):
    limiter = RedisSlidingWindowRateLimiter(
        ScriptlessRedis(redis_client, message), max_requests=2, window_seconds=60, key_prefix="test"
    )
    key = "login:alice@example.com"
    assert limiter.allow(key)
    assert limiter.allow(key)
    assert not limiter.allow(key)
    assert redis_client.zcard("test:login:alice@example.com") == 2

    limiter.reset(key)
    assert limiter.allow(key)


def test_redis_rate_limiter_propagates_other_errors(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        ScriptlessRedis(redis_client, "WRONGTYPE Operation against a key holding the wrong kind of value"),
        max_requests=2,
        window_seconds=60,
        key_prefix="test",
    )
    with pytest.raises(ResponseError):
        limiter.allow("login:alice@example.com")
