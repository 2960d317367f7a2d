from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import redis
from fastapi import Request

from KoriBackend.config import get_settings
from KoriBackend.errors import TooManyRequests

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    wait_seconds: int = 0


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: int
    message: str


# Per-scope budgets: auth attempts, general API traffic, chat messages
RULES = {
    "auth": RateLimitRule(5, 15 * 60, "Too many authentication attempts, please try again later."),
    "general": RateLimitRule(100, 15 * 60, "Too many requests from this IP, please try again later."),
    "chat": RateLimitRule(10, 60, "Too many messages, please slow down."),
}


# Sliding-window limiter over a Redis sorted set of request timestamps
class RedisRateLimiter:
    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisRateLimiter":
        return cls(redis.from_url(redis_url, decode_responses=True))

    def check(self, scope: str, identity: str, rule: Optional[RateLimitRule] = None) -> RateLimitDecision:
        rule = rule or RULES[scope]
        key = f"rate:{scope}:{identity}"
        now_ts = datetime.now(timezone.utc).timestamp()
        min_ts = now_ts - rule.window_seconds

        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.zremrangebyscore(key, 0, min_ts)  # drop hits older than the window
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)  # oldest hit decides when the caller may retry
            pipe.expire(key, rule.window_seconds + 5)
            _, count, oldest, _ = pipe.execute()

            if int(count) >= rule.max_requests:
                if not oldest:
                    return RateLimitDecision(allowed=False, wait_seconds=rule.window_seconds)
                oldest_ts = float(oldest[0][1])
                wait_s = max(0, int((oldest_ts + rule.window_seconds) - now_ts))
                return RateLimitDecision(allowed=False, wait_seconds=wait_s)

            self._client.zadd(key, {str(now_ts): now_ts})
            self._client.expire(key, rule.window_seconds + 5)
            return RateLimitDecision(allowed=True, wait_seconds=0)
        # Redis down/unreachable: never block the request
        except redis.RedisError as e:
            logger.warning("rate_limit.redis.error scope=%s error=%s", scope, e)
            return RateLimitDecision(allowed=True, wait_seconds=0)


_singleton: Optional[RedisRateLimiter] = None
_disabled_logged = False


def get_rate_limiter() -> Optional[RedisRateLimiter]:
    global _singleton, _disabled_logged
    if _singleton is not None:
        return _singleton

    redis_url = get_settings().redis_url
    if not redis_url:
        if not _disabled_logged:
            logger.info("rate_limit.disabled reason=no_redis_url")
            _disabled_logged = True
        return None
    _singleton = RedisRateLimiter.from_url(redis_url)
    return _singleton


def set_rate_limiter(limiter: Optional[RedisRateLimiter]) -> None:
    global _singleton
    _singleton = limiter


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


# FastAPI dependency factory: `Depends(rate_limit("auth"))`
def rate_limit(scope: str) -> Callable[[Request], None]:
    rule = RULES[scope]

    def _dependency(request: Request) -> None:
        limiter = get_rate_limiter()
        if limiter is None:
            return
        decision = limiter.check(scope, _client_ip(request), rule)
        if not decision.allowed:
            logger.warning("rate_limit.exceeded scope=%s wait_s=%s", scope, decision.wait_seconds)
            raise TooManyRequests(rule.message)

    return _dependency
