"""Sliding-window request limiter on a Redis sorted set.

One key per client; members are request timestamps. A hit trims entries
older than the window, adds the current one and counts what is left.
When Redis is unreachable the request is let through.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass

import redis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int


class SlidingWindowLimiter:
    def __init__(self, client, max_requests: int, window_seconds: int, prefix: str = "ratelimit"):
        self.client = client
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, max_requests: int, window_seconds: int) -> "SlidingWindowLimiter":
        client = redis.Redis.from_url(url, socket_connect_timeout=1, socket_timeout=1)
        return cls(client, max_requests, window_seconds)

    def _key(self, identifier: str) -> str:
        return f"{self.prefix}:{identifier}"

    def hit(self, identifier: str, now: float | None = None) -> RateDecision:
        now = time.time() if now is None else now
        key = self._key(identifier)
        window_start = now - self.window_seconds

        try:
            pipe = self.client.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zadd(key, {f"{now}:{uuid.uuid4().hex}": now})
            pipe.zcard(key)
            pipe.expire(key, self.window_seconds)
            _, _, count, _ = pipe.execute()
        except redis.RedisError as e:
            logger.warning("rate limiter unavailable, allowing request: %s", e)
            return RateDecision(True, self.max_requests, self.max_requests, self.window_seconds)

        count = int(count)
        remaining = max(self.max_requests - count, 0)
        return RateDecision(count <= self.max_requests, self.max_requests, remaining, self.window_seconds)

    def close(self) -> None:
        try:
            self.client.close()
        except redis.RedisError as e:
            logger.warning("closing rate limiter client failed: %s", e)
