"""Internal service API.

Called by the application's CRUD layer and by externally scheduled jobs,
never by browsers. Every route requires the ``X-Internal-Token`` header.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from coachreflect.auth.dependencies import require_internal_token
from coachreflect.config import get_settings
from coachreflect.database import get_session
from coachreflect.gamification.badges import award_special_badge, evaluate_metrics
from coachreflect.gamification.streaks import find_at_risk_streaks, record_activity
from coachreflect.internal.schemas import (
    ActivityRequest,
    ActivityResponse,
    AtRiskStreakResponse,
    AtRiskStreaksResponse,
    AttributeReferralRequest,
    AttributeReferralResponse,
    EvaluateBadgesRequest,
    EvaluateBadgesResponse,
    RateLimitCheckRequest,
    RateLimitCheckResponse,
    SettleReferralRequest,
    SettleReferralResponse,
    SpecialBadgeRequest,
    SpecialBadgeResponse,
)
from coachreflect.ratelimit.service import RATE_LIMITS, RateLimitConfig, check_rate_limit
from coachreflect.redis_client import get_redis_or_none
from coachreflect.referrals.schemas import ReferralResponse
from coachreflect.referrals.service import ReferralCreditError, attribute_referral, settle_referral

router = APIRouter(
    prefix="/internal/v1",
    tags=["Internal"],
    dependencies=[Depends(require_internal_token)],
)


@router.post("/rate-limit/check", response_model=RateLimitCheckResponse)
async def check_limit(body: RateLimitCheckRequest):
    """Count one request against a key and report whether it is allowed."""
    if body.preset is not None:
        config = RATE_LIMITS.get(body.preset)
        if config is None:
            raise HTTPException(status_code=400, detail=f"Unknown rate limit preset: {body.preset}")
    else:
        config = RateLimitConfig(
            max_requests=body.max_requests,  # type: ignore[arg-type]
            window_seconds=body.window_seconds,  # type: ignore[arg-type]
            fail_closed=body.fail_closed,
        )

    try:
        result = await check_rate_limit(get_redis_or_none(), body.key, config)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return RateLimitCheckResponse(
        allowed=result.allowed,
        remaining=result.remaining,
        reset_in_seconds=result.reset_in_seconds,
        limit=config.max_requests,
    )


@router.post("/activity", response_model=ActivityResponse)
async def record_user_activity(body: ActivityRequest, db: AsyncSession = Depends(get_session)):
    """Count a qualifying activity towards the user's streak."""
    try:
        result = await record_activity(db, body.user_id, body.occurred_at)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    await db.commit()

    return ActivityResponse(
        current_streak=result.current_streak,
        longest_streak=result.longest_streak,
        total_active_days=result.total_active_days,
        is_new_day=result.is_new_day,
        is_milestone=result.is_milestone,
        badges_earned=result.badges_earned,
    )


@router.get("/streaks/at-risk", response_model=AtRiskStreaksResponse)
async def list_at_risk_streaks(
    min_streak: int | None = Query(None, ge=1),
    db: AsyncSession = Depends(get_session),
):
    """Users whose streak ends today unless they are active (streak reminder job)."""
    if min_streak is None:
        min_streak = get_settings().streak_reminder_min_streak
    at_risk = await find_at_risk_streaks(db, min_streak=min_streak)
    return AtRiskStreaksResponse(
        users=[
            AtRiskStreakResponse(
                user_id=s.user_id,
                email=s.email,
                display_name=s.display_name,
                current_streak=s.current_streak,
                timezone=s.timezone,
            )
            for s in at_risk
        ],
        total=len(at_risk),
    )


@router.post("/badges/evaluate", response_model=EvaluateBadgesResponse)
async def evaluate_user_badges(body: EvaluateBadgesRequest, db: AsyncSession = Depends(get_session)):
    """Grant every badge whose threshold the supplied metric values meet."""
    try:
        earned = await evaluate_metrics(db, body.user_id, body.metrics)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    await db.commit()
    return EvaluateBadgesResponse(badges_earned=earned)


@router.post("/badges/special", response_model=SpecialBadgeResponse)
async def grant_special_badge(body: SpecialBadgeRequest, db: AsyncSession = Depends(get_session)):
    """Award a badge that is not driven by a metric."""
    try:
        awarded = await award_special_badge(db, body.user_id, body.badge_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    await db.commit()
    return SpecialBadgeResponse(awarded=awarded)


@router.post("/referrals/attribute", response_model=AttributeReferralResponse)
async def attribute_user_referral(body: AttributeReferralRequest, db: AsyncSession = Depends(get_session)):
    """Attribute a new signup to the owner of a referral code."""
    try:
        result = await attribute_referral(
            db,
            body.referred_id,
            body.referral_code,
            reward_type=body.reward_type,
            reward_amount=body.reward_amount,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    await db.commit()
    return AttributeReferralResponse(
        created=result.created,
        referral=ReferralResponse.model_validate(result.referral),
    )


@router.post("/referrals/settle", response_model=SettleReferralResponse)
async def settle_user_referral(body: SettleReferralRequest, db: AsyncSession = Depends(get_session)):
    """Advance the user's referral for a qualifying action (``signed_up`` or ``subscribed``)."""
    try:
        result = await settle_referral(db, body.user_id, body.action)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ReferralCreditError:
        await db.rollback()
        raise
    await db.commit()

    if result is None:
        return SettleReferralResponse(settled=False)
    return SettleReferralResponse(
        settled=True,
        referral_id=result.referral_id,
        referrer_id=result.referrer_id,
        status=result.status.value,
        credited=result.credited,
        reward_type=result.reward_type,
        reward_amount=result.reward_amount,
    )
