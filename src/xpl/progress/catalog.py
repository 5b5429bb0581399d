"""Challenge catalog reads and sync.

The catalog is owned by the content system; this service only keeps a local
copy of each challenge's slug, difficulty and registered objectives.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from xpl.db.models import DIFFICULTIES, Challenge, ChallengeObjective

logger = logging.getLogger(__name__)


async def get_challenge_by_slug(db: AsyncSession, slug: str) -> Challenge | None:
    """Challenge with its objectives eagerly loaded, or None."""
    result = await db.execute(
        select(Challenge).options(selectinload(Challenge.objectives)).where(Challenge.slug == slug)
    )
    return result.scalar_one_or_none()


def objective_keys(challenge: Challenge) -> set[str]:
    return {obj.objective_key for obj in challenge.objectives}


async def count_challenges(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(Challenge))
    return int(result.scalar_one())


async def sync_challenge(
    db: AsyncSession,
    slug: str,
    title: str,
    difficulty: str,
    objectives: list[dict],
) -> Challenge:
    """Create or update a challenge and replace its objective set, then commit.

    ``objectives`` items carry ``objective_key``, ``title`` and optionally
    ``description`` and ``category``.
    """
    if difficulty not in DIFFICULTIES:
        msg = f"Unknown difficulty: {difficulty}"
        raise ValueError(msg)
    keys = [o["objective_key"] for o in objectives]
    if len(keys) != len(set(keys)):
        msg = f"Duplicate objective keys for {slug}"
        raise ValueError(msg)

    challenge = await get_challenge_by_slug(db, slug)
    if challenge is None:
        challenge = Challenge(
            slug=slug,
            title=title,
            difficulty=difficulty,
            created_at=datetime.now(timezone.utc),
        )
        db.add(challenge)
    else:
        challenge.title = title
        challenge.difficulty = difficulty

    existing = {obj.objective_key: obj for obj in challenge.objectives}
    kept = []
    for item in objectives:
        obj = existing.get(item["objective_key"])
        if obj is None:
            obj = ChallengeObjective(objective_key=item["objective_key"])
        obj.title = item["title"]
        obj.description = item.get("description")
        obj.category = item.get("category", "status")
        kept.append(obj)
    challenge.objectives = kept

    await db.commit()
    logger.info("Synced challenge %s (%d objectives)", slug, len(kept))
    return challenge
