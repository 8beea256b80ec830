"""Token-bucket limiter behaviour against an in-memory Redis double."""

import pytest
import redis
from fastapi import HTTPException
from starlette.requests import Request

from orderpay.common.ratelimit import TokenBucketLimiter


class FakeRedis:
    """Just the hash commands the limiter uses."""

    def __init__(self) -> None:
        self.hashes = {}

    def hmget(self, key, *fields):
        data = self.hashes.get(key, {})
        return [data.get(field) for field in fields]

    def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})

    def expire(self, key, seconds):
        return True


class DownRedis:
    def hmget(self, key, *fields):
        raise redis.ConnectionError("connection refused")


def request_from(host):
    return Request({"type": "http", "method": "POST", "path": "/orders", "headers": [], "client": (host, 1234)})


def test_bucket_allows_up_to_capacity_then_rejects():
    """Each client key has its own bucket."""

    limiter = TokenBucketLimiter(FakeRedis(), limit_per_minute=2, prefix="test")

    assert limiter.allow("1.2.3.4") is True
    assert limiter.allow("1.2.3.4") is True
    assert limiter.allow("1.2.3.4") is False
    assert limiter.allow("5.6.7.8") is True


def test_dependency_raises_429_when_exhausted():
    """An empty bucket turns into HTTP 429."""

    limiter = TokenBucketLimiter(FakeRedis(), limit_per_minute=1, prefix="test")
    limiter(request_from("1.2.3.4"))

    with pytest.raises(HTTPException) as exc_info:
        limiter(request_from("1.2.3.4"))
    assert exc_info.value.status_code == 429


def test_redis_outage_fails_open():
    """Requests keep flowing when Redis is unreachable."""

    limiter = TokenBucketLimiter(DownRedis(), limit_per_minute=1, prefix="test")

    assert limiter(request_from("1.2.3.4")) is None
