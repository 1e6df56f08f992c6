"""Fixtures for tests that need PostgreSQL.

Every test gets a fresh engine, migrated and truncated tables and a seeded
badge catalog. The whole directory is skipped when PostgreSQL is unreachable.
"""

from __future__ import annotations

import subprocess
import sys
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import date
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coachreflect.config import get_settings
from coachreflect.database import close_db, get_engine, get_session_factory, init_db
from coachreflect.db.models import Profile, Streak
from coachreflect.gamification.seed import seed_badges
from coachreflect.main import create_app
from coachreflect.redis_client import close_redis

PROJECT_ROOT = Path(__file__).resolve().parents[2]

TRUNCATE_SQL = "TRUNCATE TABLE referrals, user_badges, streaks, badges, profiles RESTART IDENTITY CASCADE"

_migrated = False


def _ensure_migrations() -> None:
    """Apply Alembic migrations once per test run."""
    global _migrated  # noqa: PLW0603
    if _migrated:
        return
    result = subprocess.run(  # noqa: S603
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        pytest.skip(f"Alembic migrations failed: {result.stderr.strip()[-500:]}")
    _migrated = True


@pytest_asyncio.fixture(autouse=True)
async def pg() -> AsyncGenerator[None, None]:
    await close_redis()
    await close_db()
    await init_db(get_settings().database_url)

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (OSError, SQLAlchemyError) as exc:
        await close_db()
        pytest.skip(f"Postgres is required for integration tests: {exc}")

    _ensure_migrations()

    async with get_engine().begin() as conn:
        await conn.execute(text(TRUNCATE_SQL))

    async with get_session_factory()() as session:
        await seed_badges(session)

    yield

    await close_db()


@pytest.fixture
def session_factory(pg) -> async_sessionmaker[AsyncSession]:
    """Independent sessions for simulating concurrent request handlers."""
    return get_session_factory()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_profile(session_factory) -> Callable[..., Awaitable[uuid.UUID]]:
    async def _make(
        *,
        timezone: str = "UTC",
        referral_code: str | None = None,
        email: str | None = None,
    ) -> uuid.UUID:
        user_id = uuid.uuid4()
        async with session_factory() as session:
            session.add(
                Profile(
                    user_id=user_id,
                    email=email or f"{user_id.hex[:8]}@example.com",
                    timezone=timezone,
                    referral_code=referral_code,
                )
            )
            await session.commit()
        return user_id

    return _make


@pytest.fixture
def set_streak(session_factory) -> Callable[..., Awaitable[None]]:
    async def _set(user_id: uuid.UUID, current: int, longest: int, last: date, total: int) -> None:
        async with session_factory() as session:
            session.add(
                Streak(
                    user_id=user_id,
                    current_streak=current,
                    longest_streak=longest,
                    last_activity_date=last,
                    total_active_days=total,
                )
            )
            await session.commit()

    return _set


@pytest_asyncio.fixture
async def api_client(pg, settings_env) -> AsyncGenerator[AsyncClient, None]:
    """Client against the app with a live database and no Redis."""
    settings_env(internal_api_token="integration-token")
    app = create_app()
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Internal-Token": "integration-token"},
    ) as ac:
        yield ac
