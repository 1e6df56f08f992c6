"""Pydantic response models for gamification endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict


# --- Badge ---


class BadgeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    emoji: str
    category: str
    rarity: str
    requirement_metric: str | None = None
    requirement_value: int


class AllBadgesResponse(BaseModel):
    badges: list[BadgeResponse]


class UserBadgeResponse(BaseModel):
    badge: BadgeResponse
    earned: bool
    earned_at: datetime | None = None


# --- Streak ---


class StreakResponse(BaseModel):
    current_streak: int
    longest_streak: int
    total_active_days: int
    last_activity_date: date | None = None
    active_today: bool


# --- Summary ---


class GamificationSummaryResponse(BaseModel):
    streak: StreakResponse
    badges: list[UserBadgeResponse]
    earned_count: int
    total_count: int
    new_badges: list[BadgeResponse]
