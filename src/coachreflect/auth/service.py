"""Profile lookup and provisioning."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from coachreflect.db.models import Profile


async def get_profile(db: AsyncSession, user_id: uuid.UUID) -> Profile | None:
    """Get a profile by user id."""
    result = await db.execute(select(Profile).where(Profile.user_id == user_id))
    return result.scalar_one_or_none()


async def ensure_profile(db: AsyncSession, user_id: uuid.UUID, email: str | None = None) -> Profile:
    """
    Return the user's profile, creating it on first sight.

    The insert is idempotent, so two first requests racing each other both
    end up with the same row.
    """
    profile = await get_profile(db, user_id)
    if profile is not None:
        return profile

    await db.execute(
        pg_insert(Profile)
        .values(user_id=user_id, email=email)
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    await db.commit()

    profile = await get_profile(db, user_id)
    if profile is None:
        msg = f"Profile {user_id} vanished after provisioning"
        raise RuntimeError(msg)
    return profile
