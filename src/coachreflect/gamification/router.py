"""Gamification API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from coachreflect.auth.dependencies import get_current_user
from coachreflect.database import get_session
from coachreflect.db.models import Profile
from coachreflect.gamification.badges import collect_unnotified_badges, get_user_badges, list_catalog
from coachreflect.gamification.schemas import (
    AllBadgesResponse,
    BadgeResponse,
    GamificationSummaryResponse,
    StreakResponse,
    UserBadgeResponse,
)
from coachreflect.gamification.streaks import get_streak_summary

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges(db: AsyncSession = Depends(get_session)):
    """Get all badge definitions."""
    badges = await list_catalog(db)
    return AllBadgesResponse(badges=[BadgeResponse.model_validate(b) for b in badges])


@router.get("/gamification", response_model=GamificationSummaryResponse)
async def get_gamification_summary(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Streak, badge progress and badges earned since the last visit.

    Badges reported in ``new_badges`` are flagged as notified and will not be
    reported again.
    """
    streak = await get_streak_summary(db, user.user_id)
    statuses = await get_user_badges(db, user.user_id)
    new_badges = await collect_unnotified_badges(db, user.user_id)
    await db.commit()

    return GamificationSummaryResponse(
        streak=StreakResponse(
            current_streak=streak.current_streak,
            longest_streak=streak.longest_streak,
            total_active_days=streak.total_active_days,
            last_activity_date=streak.last_activity_date,
            active_today=streak.active_today,
        ),
        badges=[
            UserBadgeResponse(
                badge=BadgeResponse.model_validate(s.badge),
                earned=s.earned,
                earned_at=s.earned_at,
            )
            for s in statuses
        ],
        earned_count=sum(1 for s in statuses if s.earned),
        total_count=len(statuses),
        new_badges=[BadgeResponse.model_validate(b) for b in new_badges],
    )
