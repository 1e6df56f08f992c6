"""Engagement tables.

Creates streaks, badges, user_badges and referrals. Every per-user row
cascades on profile deletion.

Revision ID: 002_engagement_tables
Revises: 001_baseline
Create Date: 2026-10-01
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_engagement_tables"
down_revision: str | None = "001_baseline"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Streaks (one row per user) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS streaks (
            user_id UUID PRIMARY KEY REFERENCES profiles(user_id) ON DELETE CASCADE,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_activity_date DATE,
            total_active_days INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT streaks_current_streak_check CHECK (current_streak >= 0),
            CONSTRAINT streaks_longest_streak_check CHECK (longest_streak >= current_streak),
            CONSTRAINT streaks_total_active_days_check CHECK (total_active_days >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_streaks_at_risk
        ON streaks(last_activity_date)
        WHERE current_streak > 0
    """)

    # --- Badge catalog ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badges (
            id VARCHAR(64) PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            emoji VARCHAR(16) NOT NULL DEFAULT '',
            category VARCHAR(16) NOT NULL,
            rarity VARCHAR(16) NOT NULL DEFAULT 'common',
            requirement_metric VARCHAR(32),
            requirement_value INTEGER NOT NULL DEFAULT 0,
            sort_order INTEGER NOT NULL DEFAULT 0
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_badges_metric
        ON badges(requirement_metric, requirement_value)
    """)

    # --- User badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            id SERIAL PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES profiles(user_id) ON DELETE CASCADE,
            badge_id VARCHAR(64) NOT NULL REFERENCES badges(id),
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            notified BOOLEAN NOT NULL DEFAULT false,
            CONSTRAINT user_badges_user_id_badge_id_key UNIQUE (user_id, badge_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_badges_unnotified
        ON user_badges(user_id)
        WHERE notified = false
    """)

    # --- Referrals ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS referrals (
            id SERIAL PRIMARY KEY,
            referrer_id UUID NOT NULL REFERENCES profiles(user_id) ON DELETE CASCADE,
            referred_id UUID NOT NULL REFERENCES profiles(user_id) ON DELETE CASCADE,
            referral_code VARCHAR(32) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            reward_type VARCHAR(32) NOT NULL DEFAULT 'pro_days',
            reward_amount INTEGER NOT NULL DEFAULT 7,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            signed_up_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            rewarded_at TIMESTAMPTZ,
            CONSTRAINT referrals_referred_id_key UNIQUE (referred_id),
            CONSTRAINT referrals_status_check
                CHECK (status IN ('pending', 'signed_up', 'completed', 'rewarded')),
            CONSTRAINT referrals_reward_amount_check CHECK (reward_amount >= 0),
            CONSTRAINT referrals_no_self_referral CHECK (referrer_id <> referred_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_referrals_referrer
        ON referrals(referrer_id, created_at DESC)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS referrals CASCADE")
    op.execute("DROP TABLE IF EXISTS user_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS badges CASCADE")
    op.execute("DROP TABLE IF EXISTS streaks CASCADE")
