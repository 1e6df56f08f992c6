"""Baseline: profiles table.

Profiles are keyed by the auth provider's user id (a UUID token subject)
and carry the per-user settings and counters the engagement tables hang off.

Revision ID: 001_baseline
Revises: None
Create Date: 2026-10-01
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_baseline"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS profiles (
            user_id UUID PRIMARY KEY,
            email VARCHAR(320),
            display_name VARCHAR(128),
            timezone VARCHAR(64) NOT NULL DEFAULT 'UTC',
            subscription_tier VARCHAR(16) NOT NULL DEFAULT 'free',
            referral_code VARCHAR(32) UNIQUE,
            referred_by UUID REFERENCES profiles(user_id) ON DELETE SET NULL,
            referral_rewards_earned INTEGER NOT NULL DEFAULT 0
                CONSTRAINT profiles_referral_rewards_earned_check CHECK (referral_rewards_earned >= 0),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_profiles_referred_by
        ON profiles(referred_by)
        WHERE referred_by IS NOT NULL
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS profiles CASCADE")
