"""Badge evaluator.

The catalog is data: every badge with a ``requirement_metric`` is a
(metric, threshold) rule. Granting is an insert-if-absent on the
``(user_id, badge_id)`` unique constraint, so concurrent evaluations of the
same milestone produce one row and only the call that inserted it reports
the badge as newly earned.
"""

from __future__ import annotations

import enum
import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from coachreflect.db.models import Badge, Profile, UserBadge

logger = logging.getLogger(__name__)

_UNIQUE_USER_BADGE = "user_badges_user_id_badge_id_key"


class Metric(str, enum.Enum):
    """Counters that drive metric badges."""

    REFLECTIONS = "reflections"
    TASKS = "tasks"
    STREAK = "streak"


@dataclass(frozen=True)
class BadgeRule:
    badge_id: str
    metric: str
    threshold: int
    sort_order: int = 0


@dataclass(frozen=True)
class BadgeStatus:
    """A catalog badge with the user's earned state."""

    badge: Badge
    earned_at: datetime | None

    @property
    def earned(self) -> bool:
        return self.earned_at is not None


def parse_metric(metric: Metric | str) -> Metric:
    """Coerce a metric name, raising ValueError for unknown metrics."""
    if isinstance(metric, Metric):
        return metric
    try:
        return Metric(metric)
    except ValueError:
        msg = f"Unknown metric: {metric!r}"
        raise ValueError(msg) from None


def matching_badge_ids(rules: Iterable[BadgeRule], metric: Metric | str, value: int) -> list[str]:
    """Badge ids whose rule is satisfied by ``value`` for ``metric``, in catalog order."""
    metric = parse_metric(metric)
    if value < 0:
        msg = f"Metric value must be non-negative, got {value}"
        raise ValueError(msg)
    matched = [r for r in rules if r.metric == metric.value and r.threshold <= value]
    matched.sort(key=lambda r: (r.sort_order, r.threshold))
    return [r.badge_id for r in matched]


async def load_rules(db: AsyncSession, metric: Metric) -> list[BadgeRule]:
    """Load the catalog rules for one metric."""
    result = await db.execute(
        select(Badge.id, Badge.requirement_metric, Badge.requirement_value, Badge.sort_order)
        .where(Badge.requirement_metric == metric.value)
    )
    return [BadgeRule(row.id, row.requirement_metric, row.requirement_value, row.sort_order) for row in result]


async def _require_profile(db: AsyncSession, user_id: uuid.UUID) -> None:
    result = await db.execute(select(Profile.user_id).where(Profile.user_id == user_id))
    if result.scalar_one_or_none() is None:
        msg = f"Unknown user: {user_id}"
        raise ValueError(msg)


async def _grant(db: AsyncSession, user_id: uuid.UUID, badge_ids: list[str]) -> set[str]:
    """Insert-if-absent; returns the ids this call actually inserted."""
    if not badge_ids:
        return set()
    stmt = (
        pg_insert(UserBadge)
        .values([{"user_id": user_id, "badge_id": badge_id} for badge_id in badge_ids])
        .on_conflict_do_nothing(constraint=_UNIQUE_USER_BADGE)
        .returning(UserBadge.badge_id)
    )
    result = await db.execute(stmt)
    return set(result.scalars().all())


async def evaluate_badges(
    db: AsyncSession,
    user_id: uuid.UUID,
    metric: Metric | str,
    value: int,
) -> list[str]:
    """Grant every badge for ``metric`` whose threshold is met by ``value``.

    Returns only the badges newly inserted by this call, in catalog order.
    Badges the user already holds are not reported again.

    Raises:
        ValueError: If the metric is unknown or the value is negative.
    """
    metric = parse_metric(metric)
    eligible = matching_badge_ids(await load_rules(db, metric), metric, value)
    inserted = await _grant(db, user_id, eligible)
    earned = [badge_id for badge_id in eligible if badge_id in inserted]
    if earned:
        logger.info("User %s earned badges %s (%s=%d)", user_id, earned, metric.value, value)
    return earned


async def evaluate_metrics(
    db: AsyncSession,
    user_id: uuid.UUID,
    values: Mapping[Metric | str, int],
) -> list[str]:
    """Evaluate several metrics independently and union the newly earned badges."""
    parsed = [(parse_metric(metric), value) for metric, value in values.items()]
    await _require_profile(db, user_id)
    earned: list[str] = []
    for metric, value in parsed:
        for badge_id in await evaluate_badges(db, user_id, metric, value):
            if badge_id not in earned:
                earned.append(badge_id)
    return earned


async def award_special_badge(db: AsyncSession, user_id: uuid.UUID, badge_id: str) -> bool:
    """Award a badge that has no metric rule (e.g. ``early_adopter``).

    Returns True if awarded now, False if the user already had it.

    Raises:
        ValueError: If the badge or user is unknown, or the badge is earned through a metric.
    """
    badge = await db.get(Badge, badge_id)
    if badge is None:
        msg = f"Unknown badge: {badge_id!r}"
        raise ValueError(msg)
    if badge.requirement_metric is not None:
        msg = f"Badge {badge_id!r} is earned through the {badge.requirement_metric} metric"
        raise ValueError(msg)
    await _require_profile(db, user_id)
    return badge_id in await _grant(db, user_id, [badge_id])


async def list_catalog(db: AsyncSession) -> list[Badge]:
    """All badge definitions in display order."""
    result = await db.execute(select(Badge).order_by(Badge.sort_order, Badge.id))
    return list(result.scalars().all())


async def get_user_badges(db: AsyncSession, user_id: uuid.UUID) -> list[BadgeStatus]:
    """The full catalog with the user's earned timestamps."""
    result = await db.execute(
        select(Badge, UserBadge.earned_at)
        .outerjoin(UserBadge, and_(UserBadge.badge_id == Badge.id, UserBadge.user_id == user_id))
        .order_by(Badge.sort_order, Badge.id)
    )
    return [BadgeStatus(badge=row.Badge, earned_at=row.earned_at) for row in result]


async def collect_unnotified_badges(db: AsyncSession, user_id: uuid.UUID) -> list[Badge]:
    """Flag the user's unnotified badges as notified and return them.

    The flag flip is a single UPDATE ... RETURNING, so two concurrent callers
    never both receive the same badge.
    """
    result = await db.execute(
        update(UserBadge)
        .where(UserBadge.user_id == user_id, UserBadge.notified.is_(False))
        .values(notified=True)
        .returning(UserBadge.badge_id)
        .execution_options(synchronize_session=False)
    )
    badge_ids = list(result.scalars().all())
    if not badge_ids:
        return []
    badges = await db.execute(select(Badge).where(Badge.id.in_(badge_ids)).order_by(Badge.sort_order))
    return list(badges.scalars().all())
