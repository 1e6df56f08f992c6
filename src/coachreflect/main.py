"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from coachreflect.config import get_settings
from coachreflect.database import close_db, get_session_factory, init_db
from coachreflect.gamification.router import router as gamification_router
from coachreflect.gamification.seed import seed_badges
from coachreflect.health.router import router as health_router
from coachreflect.internal.router import router as internal_router
from coachreflect.middleware import setup_middleware
from coachreflect.redis_client import close_redis, init_redis
from coachreflect.referrals.router import router as referrals_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        lock_timeout_ms=settings.database_lock_timeout_ms,
    )
    await init_redis(settings.redis_url)

    # Seed badge catalog (idempotent)
    try:
        async with get_session_factory()() as db:
            await seed_badges(db)
    except (SQLAlchemyError, OSError):
        logger.warning("Badge seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Coach Reflection Engagement API",
        description="Rate limits, streaks, badges and referrals for Coach Reflection",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(gamification_router)
    app.include_router(referrals_router)
    app.include_router(internal_router)

    return app


app = create_app()
