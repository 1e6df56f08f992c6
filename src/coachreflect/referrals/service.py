"""Referral ledger.

Lifecycle of a referral row::

    pending -> signed_up -> completed -> rewarded

Status only moves forward. Settlement locks the referral row, so two
concurrent ``subscribed`` settlements serialise and the second finds the
referral already rewarded. The referrer's credit is a single atomic
increment issued inside the same transaction as the status change; if it
cannot be applied the whole settlement is abandoned and the referral keeps
its previous status.
"""

from __future__ import annotations

import enum
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coachreflect.config import get_settings
from coachreflect.db.models import Profile, Referral
from coachreflect.referrals.codes import generate_unique_referral_code, normalize_referral_code

logger = logging.getLogger(__name__)

_UNIQUE_REFERRED = "referrals_referred_id_key"


class ReferralStatus(str, enum.Enum):
    PENDING = "pending"
    SIGNED_UP = "signed_up"
    COMPLETED = "completed"
    REWARDED = "rewarded"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [
    ReferralStatus.PENDING,
    ReferralStatus.SIGNED_UP,
    ReferralStatus.COMPLETED,
    ReferralStatus.REWARDED,
]


class SettlementAction(str, enum.Enum):
    SIGNED_UP = "signed_up"
    SUBSCRIBED = "subscribed"


class ReferralCreditError(RuntimeError):
    """The referrer's reward could not be credited; settlement must be retried."""

    def __init__(self, referral_id: int, message: str) -> None:
        super().__init__(message)
        self.referral_id = referral_id


@dataclass(frozen=True)
class AttributionResult:
    created: bool
    referral: Referral


@dataclass(frozen=True)
class SettlementResult:
    referral_id: int
    referrer_id: uuid.UUID
    status: ReferralStatus
    credited: bool
    reward_type: str
    reward_amount: int
    referrer_total_rewards: int | None = None


@dataclass(frozen=True)
class ReferralOverview:
    referral_code: str
    share_url: str
    counts: dict[str, int]
    total: int
    total_rewards: int
    recent: list[Referral] = field(default_factory=list)


def can_transition(old: ReferralStatus | str, new: ReferralStatus | str) -> bool:
    """True if ``old -> new`` moves strictly forward."""
    return ReferralStatus(new).rank > ReferralStatus(old).rank


def parse_action(action: SettlementAction | str) -> SettlementAction:
    try:
        return SettlementAction(action)
    except ValueError:
        msg = f"Unknown settlement action: {action!r}"
        raise ValueError(msg) from None


async def ensure_referral_code(db: AsyncSession, user_id: uuid.UUID) -> str:
    """Return the user's referral code, assigning one on first use."""
    result = await db.execute(select(Profile.referral_code).where(Profile.user_id == user_id))
    row = result.one_or_none()
    if row is None:
        msg = f"Unknown user: {user_id}"
        raise ValueError(msg)
    if row.referral_code:
        return row.referral_code

    code = await generate_unique_referral_code(db, user_id, get_settings().referral_code_prefix)
    assigned = await db.execute(
        update(Profile)
        .where(Profile.user_id == user_id, Profile.referral_code.is_(None))
        .values(referral_code=code, updated_at=datetime.now(timezone.utc))
        .returning(Profile.referral_code)
        .execution_options(synchronize_session=False)
    )
    if assigned.scalar_one_or_none() is None:
        # A concurrent request assigned one first.
        existing = await db.execute(select(Profile.referral_code).where(Profile.user_id == user_id))
        return existing.scalar_one()
    logger.info("Assigned referral code %s to %s", code, user_id)
    return code


async def _get_referral(db: AsyncSession, referred_id: uuid.UUID, *, for_update: bool = False) -> Referral | None:
    stmt = select(Referral).where(Referral.referred_id == referred_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def attribute_referral(
    db: AsyncSession,
    referred_id: uuid.UUID,
    code: str,
    *,
    reward_type: str | None = None,
    reward_amount: int | None = None,
) -> AttributionResult:
    """Record that ``referred_id`` signed up with ``code``.

    A user can only ever be referred once: if a referral already exists it is
    returned unchanged with ``created=False``. The caller commits.

    Raises:
        ValueError: Unknown code, self-referral, unknown user or negative reward.
    """
    settings = get_settings()
    normalized = normalize_referral_code(code)
    reward_type = reward_type or settings.referral_reward_type
    reward_amount = settings.referral_reward_amount if reward_amount is None else reward_amount
    if reward_amount < 0:
        msg = "Reward amount must be non-negative"
        raise ValueError(msg)

    result = await db.execute(select(Profile.user_id).where(Profile.referral_code == normalized))
    referrer_id = result.scalar_one_or_none()
    if referrer_id is None:
        msg = "Invalid referral code"
        raise ValueError(msg)
    if referrer_id == referred_id:
        msg = "Cannot refer yourself"
        raise ValueError(msg)

    referred = await db.execute(select(Profile.user_id).where(Profile.user_id == referred_id))
    if referred.scalar_one_or_none() is None:
        msg = f"Unknown user: {referred_id}"
        raise ValueError(msg)

    inserted = await db.execute(
        pg_insert(Referral)
        .values(
            referrer_id=referrer_id,
            referred_id=referred_id,
            referral_code=normalized,
            status=ReferralStatus.PENDING.value,
            reward_type=reward_type,
            reward_amount=reward_amount,
        )
        .on_conflict_do_nothing(constraint=_UNIQUE_REFERRED)
        .returning(Referral.id)
    )
    created = inserted.scalar_one_or_none() is not None

    if created:
        await db.execute(
            update(Profile)
            .where(Profile.user_id == referred_id, Profile.referred_by.is_(None))
            .values(referred_by=referrer_id, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        logger.info("Referral attributed: %s referred %s via %s", referrer_id, referred_id, normalized)

    referral = await _get_referral(db, referred_id)
    if referral is None:
        msg = f"Referral for {referred_id} vanished after attribution"
        raise RuntimeError(msg)
    return AttributionResult(created=created, referral=referral)


async def _credit_referrer(db: AsyncSession, referral: Referral) -> int:
    """Add the referral's reward to the referrer's counter. Returns the new total.

    One atomic increment per attempt, each inside a savepoint so a failed
    attempt leaves the outer transaction usable.
    """
    attempts = max(1, get_settings().referral_credit_attempts)
    referral_id, referrer_id, amount = referral.id, referral.referrer_id, referral.reward_amount
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            async with db.begin_nested():
                result = await db.execute(
                    update(Profile)
                    .where(Profile.user_id == referrer_id)
                    .values(
                        referral_rewards_earned=Profile.referral_rewards_earned + amount,
                        updated_at=datetime.now(timezone.utc),
                    )
                    .returning(Profile.referral_rewards_earned)
                    .execution_options(synchronize_session=False)
                )
                new_total = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            last_error = e
            logger.warning(
                "Referral %d credit attempt %d/%d failed", referral_id, attempt, attempts, exc_info=True
            )
            continue

        if new_total is None:
            raise ReferralCreditError(referral_id, f"Referrer {referrer_id} has no profile")
        return new_total

    raise ReferralCreditError(
        referral_id, f"Failed to credit referral {referral_id} after {attempts} attempts"
    ) from last_error


async def settle_referral(
    db: AsyncSession,
    referred_id: uuid.UUID,
    action: SettlementAction | str,
    now: datetime | None = None,
) -> SettlementResult | None:
    """Advance the referral of ``referred_id`` for a qualifying action.

    ``signed_up`` moves a pending referral to signed_up. ``subscribed``
    completes the referral, credits the referrer and marks it rewarded.
    Returns None when the user was not referred or the referral is already
    past the action, which makes repeated settlement a no-op. The caller
    commits.

    Raises:
        ValueError: If the action is unknown.
        ReferralCreditError: If the credit keeps failing. The caller must
            roll back; the referral keeps its previous status.
    """
    action = parse_action(action)
    now = now or datetime.now(timezone.utc)

    referral = await _get_referral(db, referred_id, for_update=True)
    if referral is None:
        return None
    status = ReferralStatus(referral.status)

    if action is SettlementAction.SIGNED_UP:
        if not can_transition(status, ReferralStatus.SIGNED_UP):
            return None
        referral.status = ReferralStatus.SIGNED_UP.value
        referral.signed_up_at = now
        await db.flush()
        return SettlementResult(
            referral_id=referral.id,
            referrer_id=referral.referrer_id,
            status=ReferralStatus.SIGNED_UP,
            credited=False,
            reward_type=referral.reward_type,
            reward_amount=referral.reward_amount,
        )

    if not can_transition(status, ReferralStatus.COMPLETED):
        return None

    referral.status = ReferralStatus.COMPLETED.value
    referral.completed_at = now
    await db.flush()

    new_total = await _credit_referrer(db, referral)

    referral.status = ReferralStatus.REWARDED.value
    referral.rewarded_at = now
    await db.flush()
    logger.info(
        "Referral %d rewarded: %d %s to %s",
        referral.id,
        referral.reward_amount,
        referral.reward_type,
        referral.referrer_id,
    )
    return SettlementResult(
        referral_id=referral.id,
        referrer_id=referral.referrer_id,
        status=ReferralStatus.REWARDED,
        credited=True,
        reward_type=referral.reward_type,
        reward_amount=referral.reward_amount,
        referrer_total_rewards=new_total,
    )


async def get_referral_overview(db: AsyncSession, user_id: uuid.UUID, recent_limit: int = 10) -> ReferralOverview:
    """Code, share link, per-status counts and the most recent referrals of a referrer."""
    settings = get_settings()
    code = await ensure_referral_code(db, user_id)

    result = await db.execute(
        select(Referral).where(Referral.referrer_id == user_id).order_by(Referral.created_at.desc())
    )
    referrals = list(result.scalars().all())
    counted = Counter(r.status for r in referrals)

    rewards = await db.execute(select(Profile.referral_rewards_earned).where(Profile.user_id == user_id))

    return ReferralOverview(
        referral_code=code,
        share_url=f"{settings.app_base_url.rstrip('/')}/signup?ref={code}",
        counts={s.value: counted.get(s.value, 0) for s in ReferralStatus},
        total=len(referrals),
        total_rewards=rewards.scalar_one(),
        recent=referrals[:recent_limit],
    )
