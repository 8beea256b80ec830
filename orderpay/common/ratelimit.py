"""Redis token-bucket rate limiting for public endpoints."""

from time import time

import redis
from fastapi import HTTPException, Request

from orderpay.common.logging import logger


class TokenBucketLimiter:
    """Per-key token bucket (capacity = refill rate = limit per minute)."""

    def __init__(self, rdb: redis.Redis, limit_per_minute: int, prefix: str) -> None:
        self.rdb = rdb
        self.limit_per_minute = limit_per_minute
        self.prefix = prefix

    def allow(self, key: str) -> bool:
        bucket_key = f"tokenbucket:{self.prefix}:{key}"
        now = time()
        capacity = float(self.limit_per_minute)
        refill_per_sec = capacity / 60.0

        values = self.rdb.hmget(bucket_key, "tokens", "updated_at")
        tokens = float(values[0]) if values[0] is not None else capacity
        updated_at = float(values[1]) if values[1] is not None else now
        elapsed = max(0.0, now - updated_at)
        tokens = min(capacity, tokens + elapsed * refill_per_sec)

        allowed = tokens >= 1.0
        if allowed:
            tokens -= 1.0
        self.rdb.hset(bucket_key, mapping={"tokens": tokens, "updated_at": now})
        self.rdb.expire(bucket_key, 120)
        return allowed

    def __call__(self, request: Request) -> None:
        """FastAPI dependency keyed by client address; fails open if Redis is down."""

        key = request.client.host if request.client else "anonymous"
        try:
            allowed = self.allow(key)
        except redis.RedisError as exc:
            logger.warning("rate_limit_unavailable prefix=%s error=%s", self.prefix, exc)
            return
        if not allowed:
            raise HTTPException(status_code=429, detail="rate limit exceeded")
