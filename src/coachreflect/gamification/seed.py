"""Badge catalog seed data: streak, reflection and task milestones plus special badges."""

from __future__ import annotations

import logging

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from coachreflect.db.models import Badge

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    # Streaks
    {
        "id": "streak_3",
        "name": "Getting Started",
        "description": "Reflect 3 days in a row",
        "emoji": "\U0001f525",
        "category": "streak",
        "rarity": "common",
        "requirement_metric": "streak",
        "requirement_value": 3,
        "sort_order": 1,
    },
    {
        "id": "streak_7",
        "name": "Week Warrior",
        "description": "Reflect 7 days in a row",
        "emoji": "\U0001f4aa",
        "category": "streak",
        "rarity": "common",
        "requirement_metric": "streak",
        "requirement_value": 7,
        "sort_order": 2,
    },
    {
        "id": "streak_14",
        "name": "Fortnight Focus",
        "description": "Reflect 14 days in a row",
        "emoji": "⚡",
        "category": "streak",
        "rarity": "rare",
        "requirement_metric": "streak",
        "requirement_value": 14,
        "sort_order": 3,
    },
    {
        "id": "streak_30",
        "name": "Monthly Master",
        "description": "Reflect 30 days in a row",
        "emoji": "\U0001f3c6",
        "category": "streak",
        "rarity": "epic",
        "requirement_metric": "streak",
        "requirement_value": 30,
        "sort_order": 4,
    },
    {
        "id": "streak_100",
        "name": "Centurion",
        "description": "Reflect 100 days in a row",
        "emoji": "\U0001f451",
        "category": "streak",
        "rarity": "legendary",
        "requirement_metric": "streak",
        "requirement_value": 100,
        "sort_order": 5,
    },
    # Reflection milestones
    {
        "id": "reflections_1",
        "name": "First Reflection",
        "description": "Write your first post-session reflection",
        "emoji": "✏️",
        "category": "milestone",
        "rarity": "common",
        "requirement_metric": "reflections",
        "requirement_value": 1,
        "sort_order": 10,
    },
    {
        "id": "reflections_10",
        "name": "Reflective Coach",
        "description": "Write 10 reflections",
        "emoji": "\U0001f4dd",
        "category": "milestone",
        "rarity": "common",
        "requirement_metric": "reflections",
        "requirement_value": 10,
        "sort_order": 11,
    },
    {
        "id": "reflections_50",
        "name": "Dedicated Reflector",
        "description": "Write 50 reflections",
        "emoji": "\U0001f4da",
        "category": "milestone",
        "rarity": "rare",
        "requirement_metric": "reflections",
        "requirement_value": 50,
        "sort_order": 12,
    },
    {
        "id": "reflections_100",
        "name": "Century Coach",
        "description": "Write 100 reflections",
        "emoji": "\U0001f4af",
        "category": "milestone",
        "rarity": "epic",
        "requirement_metric": "reflections",
        "requirement_value": 100,
        "sort_order": 13,
    },
    {
        "id": "reflections_500",
        "name": "Reflection Legend",
        "description": "Write 500 reflections",
        "emoji": "\U0001f31f",
        "category": "milestone",
        "rarity": "legendary",
        "requirement_metric": "reflections",
        "requirement_value": 500,
        "sort_order": 14,
    },
    # Task milestones
    {
        "id": "tasks_1",
        "name": "Action Taker",
        "description": "Complete your first development task",
        "emoji": "✅",
        "category": "milestone",
        "rarity": "common",
        "requirement_metric": "tasks",
        "requirement_value": 1,
        "sort_order": 20,
    },
    {
        "id": "tasks_5",
        "name": "Follow Through",
        "description": "Complete 5 development tasks",
        "emoji": "\U0001f3af",
        "category": "milestone",
        "rarity": "common",
        "requirement_metric": "tasks",
        "requirement_value": 5,
        "sort_order": 21,
    },
    {
        "id": "tasks_10",
        "name": "Getting It Done",
        "description": "Complete 10 development tasks",
        "emoji": "\U0001f4cb",
        "category": "milestone",
        "rarity": "rare",
        "requirement_metric": "tasks",
        "requirement_value": 10,
        "sort_order": 22,
    },
    {
        "id": "tasks_25",
        "name": "Task Master",
        "description": "Complete 25 development tasks",
        "emoji": "\U0001f680",
        "category": "milestone",
        "rarity": "epic",
        "requirement_metric": "tasks",
        "requirement_value": 25,
        "sort_order": 23,
    },
    {
        "id": "tasks_50",
        "name": "Relentless Improver",
        "description": "Complete 50 development tasks",
        "emoji": "\U0001f48e",
        "category": "milestone",
        "rarity": "legendary",
        "requirement_metric": "tasks",
        "requirement_value": 50,
        "sort_order": 24,
    },
    # Special (awarded explicitly, no metric)
    {
        "id": "early_adopter",
        "name": "Early Adopter",
        "description": "Joined Coach Reflection in its first season",
        "emoji": "\U0001f331",
        "category": "special",
        "rarity": "rare",
        "requirement_metric": None,
        "requirement_value": 0,
        "sort_order": 30,
    },
    {
        "id": "first_session_plan",
        "name": "Game Plan",
        "description": "Upload and analyse your first session plan",
        "emoji": "\U0001f4cb",
        "category": "special",
        "rarity": "common",
        "requirement_metric": None,
        "requirement_value": 0,
        "sort_order": 31,
    },
]


async def seed_badges(db: AsyncSession) -> int:
    """Upsert the badge catalog. Returns number of badges seeded."""
    seeded = 0
    for badge_data in BADGE_SEED_DATA:
        stmt = pg_insert(Badge).values(**badge_data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "emoji": stmt.excluded.emoji,
                "category": stmt.excluded.category,
                "rarity": stmt.excluded.rarity,
                "requirement_metric": stmt.excluded.requirement_metric,
                "requirement_value": stmt.excluded.requirement_value,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d badge definitions", seeded)
    return seeded
