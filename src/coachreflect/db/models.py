"""ORM models for profiles, streaks, badges and referrals.

Tables are created by the raw-SQL Alembic revisions in ``alembic/versions``;
constraint names here match those revisions so ON CONFLICT targets line up.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coachreflect.db.base import Base


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class Profile(Base):
    """One row per auth-provider user. ``user_id`` is the token subject."""

    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("referral_rewards_earned >= 0", name="profiles_referral_rewards_earned_check"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, server_default="UTC")
    subscription_tier: Mapped[str] = mapped_column(String(16), nullable=False, server_default="free")
    referral_code: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True)
    referred_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.user_id", ondelete="SET NULL"), nullable=True
    )
    referral_rewards_earned: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------


class Streak(Base):
    """Daily activity streak, single row per user."""

    __tablename__ = "streaks"
    __table_args__ = (
        CheckConstraint("current_streak >= 0", name="streaks_current_streak_check"),
        CheckConstraint("longest_streak >= current_streak", name="streaks_longest_streak_check"),
        CheckConstraint("total_active_days >= 0", name="streaks_total_active_days_check"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.user_id", ondelete="CASCADE"), primary_key=True
    )
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    last_activity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_active_days: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class Badge(Base):
    """Badge catalog, seeded on startup, immutable afterwards."""

    __tablename__ = "badges"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    emoji: Mapped[str] = mapped_column(String(16), nullable=False, server_default="")
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False, server_default="common")
    requirement_metric: Mapped[str | None] = mapped_column(String(32), nullable=True)
    requirement_value: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")


class UserBadge(Base):
    """Badges earned by users. UNIQUE(user_id, badge_id) prevents duplicates."""

    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="user_badges_user_id_badge_id_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.user_id", ondelete="CASCADE"), nullable=False
    )
    badge_id: Mapped[str] = mapped_column(String(64), ForeignKey("badges.id"), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))
    notified: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")

    badge: Mapped[Badge] = relationship("Badge", lazy="joined")


# ---------------------------------------------------------------------------
# Referrals
# ---------------------------------------------------------------------------


class Referral(Base):
    """Referrer -> referred relationship. ``referred_id`` is unique (one referrer per user)."""

    __tablename__ = "referrals"
    __table_args__ = (
        UniqueConstraint("referred_id", name="referrals_referred_id_key"),
        CheckConstraint(
            "status IN ('pending', 'signed_up', 'completed', 'rewarded')",
            name="referrals_status_check",
        ),
        CheckConstraint("reward_amount >= 0", name="referrals_reward_amount_check"),
        CheckConstraint("referrer_id <> referred_id", name="referrals_no_self_referral"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referrer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.user_id", ondelete="CASCADE"), nullable=False
    )
    referred_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.user_id", ondelete="CASCADE"), nullable=False
    )
    referral_code: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="pending")
    reward_type: Mapped[str] = mapped_column(String(32), nullable=False, server_default="pro_days")
    reward_amount: Mapped[int] = mapped_column(Integer, nullable=False, server_default="7")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("NOW()"))
    signed_up_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rewarded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
