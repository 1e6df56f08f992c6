"""Referral code generation.

A user's code is the configured prefix followed by the first 8 hex
characters of their user id, uppercased (``COACH1A2B3C4D``). On the rare
collision a random 8-character A-Z/0-9 suffix is used instead.
"""

from __future__ import annotations

import secrets
import string
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coachreflect.db.models import Profile

REFERRAL_CHARSET = string.ascii_uppercase + string.digits  # A-Z, 0-9
REFERRAL_SUFFIX_LENGTH = 8
MAX_CODE_LENGTH = 32


def derive_referral_code(user_id: uuid.UUID, prefix: str) -> str:
    """Deterministic code for a user."""
    return f"{prefix}{user_id.hex[:REFERRAL_SUFFIX_LENGTH]}".upper()


def generate_random_referral_code(prefix: str) -> str:
    """Cryptographically random code, used when the derived one is taken."""
    suffix = "".join(secrets.choice(REFERRAL_CHARSET) for _ in range(REFERRAL_SUFFIX_LENGTH))
    return f"{prefix.upper()}{suffix}"


def normalize_referral_code(code: str) -> str:
    """Normalize a code for case-insensitive lookup."""
    normalized = code.strip().upper()
    if not normalized:
        msg = "Referral code is required"
        raise ValueError(msg)
    if len(normalized) > MAX_CODE_LENGTH:
        msg = "Invalid referral code"
        raise ValueError(msg)
    return normalized


async def code_in_use(db: AsyncSession, code: str) -> bool:
    result = await db.execute(select(Profile.user_id).where(Profile.referral_code == code))
    return result.scalar_one_or_none() is not None


async def generate_unique_referral_code(db: AsyncSession, user_id: uuid.UUID, prefix: str) -> str:
    """Derived code if free, else a random one that is not already taken."""
    code = derive_referral_code(user_id, prefix)
    if not await code_in_use(db, code):
        return code
    for _ in range(10):
        code = generate_random_referral_code(prefix)
        if not await code_in_use(db, code):
            return code
    raise RuntimeError("Failed to generate unique referral code after 10 attempts")
