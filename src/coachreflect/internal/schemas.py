"""Request and response models for the internal service API."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, Field, model_validator

from coachreflect.referrals.schemas import ReferralResponse

# Upper bound of the INTEGER columns these values are stored in.
MAX_INT = 2_147_483_647

MetricValue = Annotated[int, Field(ge=0, le=MAX_INT)]


# --- Rate limits ---


class RateLimitCheckRequest(BaseModel):
    """Either a named ``preset`` or an explicit ``max_requests``/``window_seconds`` pair."""

    key: str = Field(..., min_length=1, max_length=256)
    preset: str | None = None
    max_requests: int | None = Field(default=None, ge=1)
    window_seconds: int | None = Field(default=None, ge=1)
    fail_closed: bool = False

    @model_validator(mode="after")
    def _preset_or_explicit(self) -> RateLimitCheckRequest:
        explicit = self.max_requests is not None and self.window_seconds is not None
        if self.preset is None and not explicit:
            raise ValueError("Provide a preset or both max_requests and window_seconds")
        return self


class RateLimitCheckResponse(BaseModel):
    allowed: bool
    remaining: int
    reset_in_seconds: int
    limit: int


# --- Streaks ---


class ActivityRequest(BaseModel):
    user_id: uuid.UUID
    occurred_at: datetime | None = None


class ActivityResponse(BaseModel):
    current_streak: int
    longest_streak: int
    total_active_days: int
    is_new_day: bool
    is_milestone: bool
    badges_earned: list[str]


class AtRiskStreakResponse(BaseModel):
    user_id: uuid.UUID
    email: str | None = None
    display_name: str | None = None
    current_streak: int
    timezone: str


class AtRiskStreaksResponse(BaseModel):
    users: list[AtRiskStreakResponse]
    total: int


# --- Badges ---


class EvaluateBadgesRequest(BaseModel):
    user_id: uuid.UUID
    metrics: dict[str, MetricValue] = Field(..., min_length=1)


class EvaluateBadgesResponse(BaseModel):
    badges_earned: list[str]


class SpecialBadgeRequest(BaseModel):
    user_id: uuid.UUID
    badge_id: str = Field(..., min_length=1, max_length=64)


class SpecialBadgeResponse(BaseModel):
    awarded: bool


# --- Referrals ---


class AttributeReferralRequest(BaseModel):
    referred_id: uuid.UUID
    referral_code: str = Field(..., min_length=1, max_length=32)
    reward_type: str | None = Field(default=None, max_length=32)
    reward_amount: int | None = Field(default=None, ge=0, le=MAX_INT)


class AttributeReferralResponse(BaseModel):
    created: bool
    referral: ReferralResponse


class SettleReferralRequest(BaseModel):
    user_id: uuid.UUID
    action: str = Field(..., min_length=1, max_length=32)


class SettleReferralResponse(BaseModel):
    settled: bool
    referral_id: int | None = None
    referrer_id: uuid.UUID | None = None
    status: str | None = None
    credited: bool = False
    reward_type: str | None = None
    reward_amount: int | None = None
