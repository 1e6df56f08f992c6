"""Per-IP rate limiting middleware backed by the shared limiter."""

from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from coachreflect.ratelimit.dependencies import client_ip, rate_limit_headers
from coachreflect.ratelimit.service import RateLimitConfig, check_rate_limit
from coachreflect.redis_client import get_redis_or_none

# Paths exempt from rate limiting
_EXEMPT_PATHS = frozenset({"/health", "/ready"})


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limit requests per client IP using Redis counters."""

    def __init__(self, app: Any, requests_per_window: int = 100, window_seconds: int = 60) -> None:  # noqa: ANN401
        super().__init__(app)
        self.config = RateLimitConfig(max_requests=requests_per_window, window_seconds=window_seconds)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Check rate limit, return 429 if exceeded."""
        if request.url.path in _EXEMPT_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        result = await check_rate_limit(get_redis_or_none(), f"ip:{client_ip(request)}", self.config)
        headers = rate_limit_headers(result, self.config)

        if not result.allowed:
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
                headers={**headers, "Retry-After": str(result.reset_in_seconds)},
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
