"""Daily reflection streaks.

A streak is keyed by calendar date in the user's own timezone. The first
activity of a local day advances the streak; any further activity that day
is a no-op. Transitions run against a row locked with ``SELECT ... FOR
UPDATE`` so concurrent requests for the same user serialise and a day is
never counted twice.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from coachreflect.db.models import Profile, Streak
from coachreflect.gamification.badges import Metric, evaluate_badges

logger = logging.getLogger(__name__)

# Streak lengths that earn a badge
STREAK_BADGE_MILESTONES: tuple[int, ...] = (3, 7, 14, 30, 100)

# Streak lengths that warrant a celebration message
CELEBRATION_MILESTONES = frozenset({3, 7, 14, 30})

# How far past the receiving clock an activity timestamp may be
MAX_CLOCK_SKEW = timedelta(minutes=5)


@dataclass(frozen=True)
class StreakState:
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: date | None = None
    total_active_days: int = 0


@dataclass(frozen=True)
class ActivityResult:
    current_streak: int
    longest_streak: int
    total_active_days: int
    is_new_day: bool
    is_milestone: bool
    badges_earned: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class StreakSummary:
    current_streak: int
    longest_streak: int
    total_active_days: int
    last_activity_date: date | None
    active_today: bool


@dataclass(frozen=True)
class AtRiskStreak:
    user_id: uuid.UUID
    email: str | None
    display_name: str | None
    current_streak: int
    timezone: str


def resolve_timezone(tz_name: str | None) -> ZoneInfo:
    """ZoneInfo for ``tz_name``, falling back to UTC for empty or unknown names."""
    if tz_name:
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("Unknown timezone %r, using UTC", tz_name)
    return ZoneInfo("UTC")


def local_date(now: datetime, tz_name: str | None) -> date:
    """Calendar date of ``now`` in the given timezone. Naive datetimes are UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(resolve_timezone(tz_name)).date()


def check_activity_time(occurred_at: datetime, received_at: datetime) -> None:
    """Reject activity stamped further ahead of the receiving clock than ``MAX_CLOCK_SKEW``."""
    if occurred_at.tzinfo is None:
        occurred_at = occurred_at.replace(tzinfo=timezone.utc)
    if received_at.tzinfo is None:
        received_at = received_at.replace(tzinfo=timezone.utc)
    if occurred_at > received_at + MAX_CLOCK_SKEW:
        msg = f"Activity timestamp {occurred_at.isoformat()} is in the future"
        raise ValueError(msg)


def is_streak_milestone(streak: int) -> bool:
    return streak in CELEBRATION_MILESTONES


def advance_streak(state: StreakState | None, today: date) -> tuple[StreakState, bool]:
    """Apply one activity on ``today``.

    Returns the new state and whether the day was newly counted. Activity on
    a day already counted, or on a day before the last counted one, leaves
    the state untouched.
    """
    if state is None:
        state = StreakState()

    last = state.last_activity_date
    if last is not None and last >= today:
        return state, False

    if last is not None and last == today - timedelta(days=1):
        current = state.current_streak + 1
    else:
        current = 1

    return (
        StreakState(
            current_streak=current,
            longest_streak=max(state.longest_streak, current),
            last_activity_date=today,
            total_active_days=state.total_active_days + 1,
        ),
        True,
    )


def displayed_streak(state: StreakState, today: date) -> int:
    """Streak as shown to the user: 0 once a whole local day has been missed."""
    last = state.last_activity_date
    if last is None or last < today - timedelta(days=1):
        return 0
    return state.current_streak


def _state_from_row(row: Streak) -> StreakState:
    return StreakState(
        current_streak=row.current_streak,
        longest_streak=row.longest_streak,
        last_activity_date=row.last_activity_date,
        total_active_days=row.total_active_days,
    )


async def _profile_timezone(db: AsyncSession, user_id: uuid.UUID) -> str:
    result = await db.execute(select(Profile.timezone).where(Profile.user_id == user_id))
    tz_name = result.scalar_one_or_none()
    if tz_name is None:
        msg = f"Unknown user: {user_id}"
        raise ValueError(msg)
    return tz_name


async def _lock_streak_row(db: AsyncSession, user_id: uuid.UUID) -> Streak:
    """Create the row if missing, then lock it for the rest of the transaction."""
    await db.execute(
        pg_insert(Streak).values(user_id=user_id).on_conflict_do_nothing(index_elements=["user_id"])
    )
    result = await db.execute(
        select(Streak)
        .where(Streak.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def record_activity(
    db: AsyncSession,
    user_id: uuid.UUID,
    now: datetime | None = None,
) -> ActivityResult:
    """Count a qualifying activity (e.g. a saved reflection) towards the streak.

    Streak badges are evaluated in the same transaction. The caller commits.

    Raises:
        ValueError: If the user has no profile or ``now`` is in the future.
    """
    received_at = datetime.now(timezone.utc)
    now = now or received_at
    check_activity_time(now, received_at)
    today = local_date(now, await _profile_timezone(db, user_id))

    row = await _lock_streak_row(db, user_id)
    new_state, is_new_day = advance_streak(_state_from_row(row), today)

    badges_earned: list[str] = []
    if is_new_day:
        row.current_streak = new_state.current_streak
        row.longest_streak = new_state.longest_streak
        row.last_activity_date = new_state.last_activity_date
        row.total_active_days = new_state.total_active_days
        row.updated_at = now
        await db.flush()
        badges_earned = await evaluate_badges(db, user_id, Metric.STREAK, new_state.current_streak)
        logger.debug("Streak for %s advanced to %d", user_id, new_state.current_streak)

    return ActivityResult(
        current_streak=new_state.current_streak,
        longest_streak=new_state.longest_streak,
        total_active_days=new_state.total_active_days,
        is_new_day=is_new_day,
        is_milestone=is_new_day and is_streak_milestone(new_state.current_streak),
        badges_earned=badges_earned,
    )


async def get_streak_summary(
    db: AsyncSession,
    user_id: uuid.UUID,
    now: datetime | None = None,
) -> StreakSummary:
    """Read-only streak view. A broken streak shows as 0 until the next activity resets the row."""
    now = now or datetime.now(timezone.utc)
    today = local_date(now, await _profile_timezone(db, user_id))

    row = await db.get(Streak, user_id)
    state = _state_from_row(row) if row is not None else StreakState()
    return StreakSummary(
        current_streak=displayed_streak(state, today),
        longest_streak=state.longest_streak,
        total_active_days=state.total_active_days,
        last_activity_date=state.last_activity_date,
        active_today=state.last_activity_date == today,
    )


async def find_at_risk_streaks(
    db: AsyncSession,
    now: datetime | None = None,
    min_streak: int = 3,
) -> list[AtRiskStreak]:
    """Users whose streak of at least ``min_streak`` days ends today unless they reflect.

    That is, their last activity was yesterday in their own timezone. Every
    local date is within a day of the UTC date, so candidates are narrowed in
    SQL to a three-day band and filtered per timezone here.
    """
    if min_streak < 1:
        msg = "min_streak must be at least 1"
        raise ValueError(msg)
    now = now or datetime.now(timezone.utc)
    utc_today = local_date(now, "UTC")

    result = await db.execute(
        select(Streak, Profile)
        .join(Profile, Profile.user_id == Streak.user_id)
        .where(
            Streak.current_streak >= min_streak,
            Streak.last_activity_date >= utc_today - timedelta(days=2),
            Streak.last_activity_date <= utc_today,
        )
        .order_by(Streak.current_streak.desc())
    )

    at_risk: list[AtRiskStreak] = []
    for streak, profile in result:
        yesterday = local_date(now, profile.timezone) - timedelta(days=1)
        if streak.last_activity_date == yesterday:
            at_risk.append(
                AtRiskStreak(
                    user_id=profile.user_id,
                    email=profile.email,
                    display_name=profile.display_name,
                    current_streak=streak.current_streak,
                    timezone=profile.timezone,
                )
            )
    return at_risk
