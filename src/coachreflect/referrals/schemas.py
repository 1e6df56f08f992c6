"""Pydantic models for referral endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ReferralResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    referrer_id: uuid.UUID
    referred_id: uuid.UUID
    referral_code: str
    status: str
    reward_type: str
    reward_amount: int
    created_at: datetime
    signed_up_at: datetime | None = None
    completed_at: datetime | None = None
    rewarded_at: datetime | None = None


class ReferralStatsResponse(BaseModel):
    total: int
    pending: int
    signed_up: int
    completed: int
    rewarded: int
    total_rewards: int


class ReferralOverviewResponse(BaseModel):
    referral_code: str
    share_url: str
    stats: ReferralStatsResponse
    referrals: list[ReferralResponse]


class ApplyReferralRequest(BaseModel):
    referral_code: str = Field(..., min_length=1, max_length=32)


class ApplyReferralResponse(BaseModel):
    success: bool = True
    message: str
    referral: ReferralResponse
