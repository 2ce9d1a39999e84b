"""Fixed-window rate limiting backed by Redis.

The counter for ``rl:<identifier>`` is incremented on every call and given an
expiry equal to the window on its first increment. When Redis cannot be
reached the limiter fails open: the request is allowed and the error logged.
"""

import logging
from dataclasses import dataclass

import redis
from fastapi import Request, Response

from gather.errors import rate_limited

logger = logging.getLogger(__name__)

KEY_PREFIX = "rl"


@dataclass(frozen=True)
class RateLimit:
    requests: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in: int
    limit: int


MAGIC_LINK_PER_IP = RateLimit(requests=10, window_seconds=3600)
MAGIC_LINK_PER_EMAIL = RateLimit(requests=5, window_seconds=3600)
FORGOT_PASSWORD_PER_IP = RateLimit(requests=5, window_seconds=3600)
FORGOT_PASSWORD_PER_EMAIL = RateLimit(requests=3, window_seconds=3600)


class RateLimiter:
    def __init__(self, client: redis.Redis):
        self.client = client

    def check(self, identifier: str, limit: RateLimit) -> RateLimitResult:
        key = f"{KEY_PREFIX}:{identifier}"
        try:
            current = int(self.client.incr(key))
            if current == 1:
                self.client.expire(key, limit.window_seconds)
            ttl = int(self.client.ttl(key))
            if ttl < 0:
                # counter without an expiry would never reset
                self.client.expire(key, limit.window_seconds)
                ttl = limit.window_seconds
        except (redis.RedisError, OSError) as exc:
            logger.warning("Rate limiter store unavailable, allowing request for %s: %s", key, exc)
            return RateLimitResult(
                allowed=True,
                remaining=limit.requests,
                reset_in=limit.window_seconds,
                limit=limit.requests,
            )

        return RateLimitResult(
            allowed=current <= limit.requests,
            remaining=max(0, limit.requests - current),
            reset_in=ttl if ttl > 0 else limit.window_seconds,
            limit=limit.requests,
        )

    def close(self) -> None:
        try:
            self.client.close()
        except (redis.RedisError, OSError):
            logger.warning("Failed to close rate limiter connection", exc_info=True)


def build_rate_limiter(redis_url: str, socket_timeout: float) -> RateLimiter:
    client = redis.Redis.from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )
    return RateLimiter(client)


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client:
        return request.client.host
    return None


def apply_rate_limit_headers(response: Response, result: RateLimitResult) -> None:
    response.headers["X-RateLimit-Limit"] = str(result.limit)
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    response.headers["X-RateLimit-Reset"] = str(result.reset_in)


def enforce_rate_limit(
    limiter: RateLimiter,
    identifier: str,
    limit: RateLimit,
    response: Response | None = None,
) -> RateLimitResult:
    result = limiter.check(identifier, limit)
    if not result.allowed:
        logger.info("Rate limit exceeded for %s", identifier)
        raise rate_limited(result.reset_in)
    if response is not None:
        apply_rate_limit_headers(response, result)
    return result
