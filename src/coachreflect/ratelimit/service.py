"""Redis-backed request limiter.

Each (subject, action) key is a counter that lives for exactly one window:
the first INCR in a window arms an expiry of ``window_seconds`` and every
later INCR in that window only counts. INCR, EXPIRE NX and TTL run in one
MULTI/EXEC transaction, so concurrent handlers in separate processes never
need a client-side lock.

Store failures never raise out of :func:`check_rate_limit`. They resolve to
the config's policy: allow (fail-open, the default) or deny (fail-closed,
for security-sensitive paths such as password reset).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import redis.asyncio as redis
from redis.exceptions import RedisError

from coachreflect.config import get_settings

logger = logging.getLogger(__name__)

# TimeoutError and ConnectionResetError are OSError subclasses.
STORE_ERRORS: tuple[type[Exception], ...] = (RedisError, OSError)

MAX_KEY_LENGTH = 256


@dataclass(frozen=True)
class RateLimitConfig:
    """Limit of ``max_requests`` per ``window_seconds`` for one key."""

    max_requests: int
    window_seconds: int
    fail_closed: bool = False


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in_seconds: int


# Presets keyed by the name callers pass to the internal API.
RATE_LIMITS: dict[str, RateLimitConfig] = {
    # AI-backed chat: 30 per minute per user
    "chat": RateLimitConfig(max_requests=30, window_seconds=60),
    # Login / signup attempts: 5 per minute per IP
    "auth": RateLimitConfig(max_requests=5, window_seconds=60),
    # General API traffic: 100 per minute
    "api": RateLimitConfig(max_requests=100, window_seconds=60),
    # Reflection writes: 20 per minute per user
    "reflections": RateLimitConfig(max_requests=20, window_seconds=60),
    # Password reset: 3 per 15 minutes, denied when Redis is down
    "forgot_password": RateLimitConfig(max_requests=3, window_seconds=900, fail_closed=True),
    # Unauthenticated demo chat: 10 per hour per IP
    "demo": RateLimitConfig(max_requests=10, window_seconds=3600),
}


def validate_limit(key: str, config: RateLimitConfig) -> None:
    """Reject keys and configs that cannot produce a meaningful window."""
    if not key or not key.strip():
        msg = "Rate limit key must not be empty"
        raise ValueError(msg)
    if len(key) > MAX_KEY_LENGTH:
        msg = f"Rate limit key longer than {MAX_KEY_LENGTH} characters"
        raise ValueError(msg)
    if config.max_requests < 1:
        msg = "max_requests must be at least 1"
        raise ValueError(msg)
    if config.window_seconds < 1:
        msg = "window_seconds must be at least 1"
        raise ValueError(msg)


def evaluate_count(count: int, ttl: int, config: RateLimitConfig) -> RateLimitResult:
    """Turn the post-increment counter and its TTL into a decision."""
    reset_in = ttl if ttl > 0 else config.window_seconds
    if count > config.max_requests:
        return RateLimitResult(allowed=False, remaining=0, reset_in_seconds=reset_in)
    return RateLimitResult(
        allowed=True,
        remaining=config.max_requests - count,
        reset_in_seconds=reset_in,
    )


def store_unavailable_result(config: RateLimitConfig) -> RateLimitResult:
    """Decision used when the counter store cannot be reached."""
    if config.fail_closed:
        return RateLimitResult(allowed=False, remaining=0, reset_in_seconds=config.window_seconds)
    return RateLimitResult(
        allowed=True,
        remaining=config.max_requests,
        reset_in_seconds=config.window_seconds,
    )


async def check_rate_limit(
    redis_client: redis.Redis | None,
    key: str,
    config: RateLimitConfig,
    *,
    prefix: str | None = None,
) -> RateLimitResult:
    """Count one request against ``key`` and return the decision.

    Args:
        redis_client: Shared Redis client, or None when the pool is not up.
        key: Subject/action key, e.g. ``chat:<user_id>`` or ``ip:<addr>``.
        config: Limit to apply.
        prefix: Key namespace; defaults to ``Settings.rate_limit_prefix``.

    Raises:
        ValueError: If the key or config is invalid.
    """
    validate_limit(key, config)
    if prefix is None:
        prefix = get_settings().rate_limit_prefix
    rate_key = f"{prefix}:{key}"

    if redis_client is None:
        logger.warning("Rate limit store not initialized, applying fail policy for %s", key)
        return store_unavailable_result(config)

    try:
        async with redis_client.pipeline(transaction=True) as pipe:
            pipe.incr(rate_key)
            pipe.expire(rate_key, config.window_seconds, nx=True)
            pipe.ttl(rate_key)
            count, _, ttl = await pipe.execute()

        # -1 means the counter exists without an expiry; re-arm it so it cannot live forever.
        if ttl == -1:
            await redis_client.expire(rate_key, config.window_seconds)
            ttl = config.window_seconds
    except STORE_ERRORS:
        logger.warning("Rate limit store error for %s, applying fail policy", key, exc_info=True)
        return store_unavailable_result(config)

    result = evaluate_count(int(count), int(ttl), config)
    if not result.allowed:
        logger.info("Rate limit exceeded for %s (limit=%d)", key, config.max_requests)
    return result
