"""Per (user, challenge) reward claim.

The unique constraint on ``challenge_completion_idempotency`` is the only
serialization point between concurrent completions. Claims are never deleted.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from xpl.db.models import CompletionIdempotency

logger = logging.getLogger(__name__)


async def claim_completion(db: AsyncSession, user_id: str, challenge_id: int) -> bool:
    """Insert the claim row and commit it. Returns False if the pair was already claimed.

    Must be called with no other pending writes on the session.
    """
    db.add(
        CompletionIdempotency(
            user_id=user_id,
            challenge_id=challenge_id,
            created_at=datetime.now(timezone.utc),
        )
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Completion already claimed: user=%s challenge=%s", user_id, challenge_id)
        return False
    return True
