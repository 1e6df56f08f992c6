"""Shared test fixtures."""

from __future__ import annotations

import math
from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from coachreflect.config import get_settings
from coachreflect.database import close_db, get_session
from coachreflect.main import create_app
from coachreflect.redis_client import close_redis

INTERNAL_TOKEN = "test-internal-token"


class FakeClock:
    """Monotonic seconds the fake Redis uses for expiry."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePipeline:
    """Buffers commands and applies them in order on ``execute``, like MULTI/EXEC."""

    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._ops: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self._ops.clear()

    def incr(self, key: str) -> FakePipeline:
        self._ops.append(("incr", (key,), {}))
        return self

    def expire(self, key: str, seconds: int, nx: bool = False) -> FakePipeline:
        self._ops.append(("expire", (key, seconds), {"nx": nx}))
        return self

    def ttl(self, key: str) -> FakePipeline:
        self._ops.append(("ttl", (key,), {}))
        return self

    async def execute(self) -> list[Any]:
        if self._redis.fail:
            raise RedisConnectionError("Connection refused")
        results = []
        for name, args, kwargs in self._ops:
            results.append(await getattr(self._redis, name)(*args, **kwargs))
        self._ops.clear()
        return results


class FakeRedis:
    """The slice of redis.asyncio.Redis the rate limiter uses."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.values: dict[str, int] = {}
        self.expiry: dict[str, float] = {}
        self.fail = False

    def _purge(self, key: str) -> None:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= self.clock.now:
            self.values.pop(key, None)
            self.expiry.pop(key, None)

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def incr(self, key: str) -> int:
        self._purge(key)
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    async def expire(self, key: str, seconds: int, nx: bool = False) -> bool:
        if self.fail:
            raise RedisConnectionError("Connection refused")
        self._purge(key)
        if key not in self.values:
            return False
        if nx and key in self.expiry:
            return False
        self.expiry[key] = self.clock.now + seconds
        return True

    async def ttl(self, key: str) -> int:
        self._purge(key)
        if key not in self.values:
            return -2
        if key not in self.expiry:
            return -1
        return math.ceil(self.expiry[key] - self.clock.now)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock: FakeClock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def settings_env(monkeypatch: pytest.MonkeyPatch):
    """Set CR_* environment overrides and rebuild the cached settings."""

    def _apply(**overrides: object) -> None:
        for name, value in overrides.items():
            monkeypatch.setenv(f"CR_{name.upper()}", str(value))
        get_settings.cache_clear()

    yield _apply
    get_settings.cache_clear()


@pytest.fixture
def internal_token(settings_env) -> str:
    """Configure the internal API token for the test."""
    settings_env(internal_api_token=INTERNAL_TOKEN)
    return INTERNAL_TOKEN


@pytest_asyncio.fixture
async def app() -> AsyncGenerator[FastAPI, None]:
    """App with no database or Redis behind it.

    The lifespan does not run under ASGITransport, so routes that need a
    store are exercised by the integration suite instead.
    """
    await close_db()
    await close_redis()
    application = create_app()
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def stub_session(app: FastAPI) -> AsyncMock:
    """Stand-in session so request validation and auth failures are reached without a database."""
    session = AsyncMock()

    async def _override() -> AsyncGenerator[AsyncMock, None]:
        yield session

    app.dependency_overrides[get_session] = _override
    return session
