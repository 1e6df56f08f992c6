"""Per-user rate limit dependency tests."""

import uuid

import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from coachreflect.auth.dependencies import get_current_user
from coachreflect.db.models import Profile
from coachreflect.middleware.error_handler import setup_error_handlers
from coachreflect.ratelimit.dependencies import enforce_ip_rate_limit, enforce_rate_limit
from coachreflect.ratelimit.service import RateLimitConfig

TWO_PER_MINUTE = RateLimitConfig(max_requests=2, window_seconds=60)


@pytest.fixture
def limited_app(fake_redis, monkeypatch) -> FastAPI:
    monkeypatch.setattr("coachreflect.ratelimit.dependencies.get_redis_or_none", lambda: fake_redis)
    app = FastAPI()
    setup_error_handlers(app)

    @app.post("/chat", dependencies=[Depends(enforce_rate_limit(TWO_PER_MINUTE, "chat"))])
    async def chat():
        return {"ok": True}

    @app.post("/demo", dependencies=[Depends(enforce_ip_rate_limit(TWO_PER_MINUTE, "demo"))])
    async def demo():
        return {"ok": True}

    return app


def _as_user(app: FastAPI, user_id: uuid.UUID) -> None:
    app.dependency_overrides[get_current_user] = lambda: Profile(user_id=user_id)


@pytest.mark.asyncio
async def test_user_limited_after_budget(limited_app, fake_redis) -> None:
    user_id = uuid.uuid4()
    _as_user(limited_app, user_id)
    async with AsyncClient(transport=ASGITransport(app=limited_app), base_url="http://test") as ac:
        statuses = [(await ac.post("/chat")).status_code for _ in range(2)]
        response = await ac.post("/chat")

    assert statuses == [200, 200]
    assert response.status_code == 429
    assert response.headers["retry-after"] == "60"
    assert response.headers["x-ratelimit-limit"] == "2"
    assert f"coachreflect_ratelimit:chat:{user_id}" in fake_redis.values


@pytest.mark.asyncio
async def test_users_limited_independently(limited_app) -> None:
    async with AsyncClient(transport=ASGITransport(app=limited_app), base_url="http://test") as ac:
        _as_user(limited_app, uuid.uuid4())
        for _ in range(3):
            await ac.post("/chat")
        _as_user(limited_app, uuid.uuid4())
        response = await ac.post("/chat")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_ip_limit_uses_real_ip_header(limited_app) -> None:
    async with AsyncClient(transport=ASGITransport(app=limited_app), base_url="http://test") as ac:
        for _ in range(2):
            await ac.post("/demo", headers={"X-Real-IP": "192.0.2.10"})
        blocked = await ac.post("/demo", headers={"X-Real-IP": "192.0.2.10"})
        other = await ac.post("/demo", headers={"X-Real-IP": "192.0.2.11"})
    assert blocked.status_code == 429
    assert other.status_code == 200
