"""FastAPI dependencies that apply rate limit presets to routes."""

from collections.abc import Awaitable, Callable

from fastapi import Depends, HTTPException, Request, status

from coachreflect.auth.dependencies import get_current_user
from coachreflect.db.models import Profile
from coachreflect.ratelimit.service import RateLimitConfig, RateLimitResult, check_rate_limit
from coachreflect.redis_client import get_redis_or_none


def client_ip(request: Request) -> str:
    """Best-effort client address: first X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def rate_limit_headers(result: RateLimitResult, config: RateLimitConfig) -> dict[str, str]:
    """Headers describing the caller's remaining budget."""
    return {
        "X-RateLimit-Limit": str(config.max_requests),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_in_seconds),
    }


def raise_if_limited(result: RateLimitResult, config: RateLimitConfig) -> None:
    """Raise 429 with Retry-After when the request is over the limit."""
    if result.allowed:
        return
    headers = rate_limit_headers(result, config)
    headers["Retry-After"] = str(result.reset_in_seconds)
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Too many requests. Please try again later.",
        headers=headers,
    )


def enforce_rate_limit(config: RateLimitConfig, scope: str) -> Callable[..., Awaitable[RateLimitResult]]:
    """Build a dependency limiting the authenticated user to ``config`` for ``scope``.

    Usage::

        @router.post("/chat", dependencies=[Depends(enforce_rate_limit(RATE_LIMITS["chat"], "chat"))])
    """

    async def _dependency(user: Profile = Depends(get_current_user)) -> RateLimitResult:
        result = await check_rate_limit(get_redis_or_none(), f"{scope}:{user.user_id}", config)
        raise_if_limited(result, config)
        return result

    return _dependency


def enforce_ip_rate_limit(config: RateLimitConfig, scope: str) -> Callable[..., Awaitable[RateLimitResult]]:
    """Build a dependency limiting the client IP to ``config`` for ``scope`` (unauthenticated routes)."""

    async def _dependency(request: Request) -> RateLimitResult:
        result = await check_rate_limit(get_redis_or_none(), f"{scope}:{client_ip(request)}", config)
        raise_if_limited(result, config)
        return result

    return _dependency
