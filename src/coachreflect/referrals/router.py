"""Referral API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from coachreflect.auth.dependencies import get_current_user
from coachreflect.database import get_session
from coachreflect.db.models import Profile
from coachreflect.ratelimit.dependencies import enforce_rate_limit
from coachreflect.ratelimit.service import RATE_LIMITS
from coachreflect.referrals.schemas import (
    ApplyReferralRequest,
    ApplyReferralResponse,
    ReferralOverviewResponse,
    ReferralResponse,
    ReferralStatsResponse,
)
from coachreflect.referrals.service import attribute_referral, get_referral_overview

router = APIRouter(prefix="/api/v1/referrals", tags=["Referrals"])


@router.get("", response_model=ReferralOverviewResponse)
async def get_my_referrals(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Get the caller's referral code, share link and referral stats."""
    overview = await get_referral_overview(db, user.user_id)
    await db.commit()

    return ReferralOverviewResponse(
        referral_code=overview.referral_code,
        share_url=overview.share_url,
        stats=ReferralStatsResponse(
            total=overview.total,
            pending=overview.counts["pending"],
            signed_up=overview.counts["signed_up"],
            completed=overview.counts["completed"],
            rewarded=overview.counts["rewarded"],
            total_rewards=overview.total_rewards,
        ),
        referrals=[ReferralResponse.model_validate(r) for r in overview.recent],
    )


@router.post(
    "",
    response_model=ApplyReferralResponse,
    dependencies=[Depends(enforce_rate_limit(RATE_LIMITS["auth"], "referral"))],
)
async def apply_referral_code(
    body: ApplyReferralRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Apply a referral code to the caller's account."""
    try:
        result = await attribute_referral(db, user.user_id, body.referral_code)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    if not result.created:
        raise HTTPException(status_code=400, detail="You have already used a referral code")

    await db.commit()
    return ApplyReferralResponse(
        message="Referral code applied successfully",
        referral=ReferralResponse.model_validate(result.referral),
    )
