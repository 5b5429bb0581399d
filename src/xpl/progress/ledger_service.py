"""XP ledger: append-only event rows plus the cached per-user total.

The ledger is the only source of truth for XP. ``user_xp_totals`` is kept in
step with it inside the same transaction as every append, and
:func:`reconcile_total` rewrites it from the ledger whenever they disagree.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from xpl.db.models import XP_ACTIONS, XPTransaction, UserXPTotal
from xpl.db.upsert import insert_for
from xpl.progress.errors import LedgerConstraintError

logger = logging.getLogger(__name__)


def completion_dedupe_key(user_id: str, challenge_id: int) -> str:
    return f"challenge_completed:{user_id}:{challenge_id}"


async def append_transactions(db: AsyncSession, rows: list[XPTransaction]) -> list[XPTransaction]:
    """Append a batch of ledger rows.

    The batch is flushed as a unit. A uniqueness violation (second
    ``challenge_completed`` row for a pair, second ``first_challenge`` row,
    second ``daily_streak`` row on a day) raises
    :class:`LedgerConstraintError`; the caller must roll back, which discards
    every row of the batch.
    """
    if not rows:
        return []
    for row in rows:
        if row.action not in XP_ACTIONS:
            msg = f"Unknown ledger action: {row.action}"
            raise ValueError(msg)

    user_id = rows[0].user_id
    keys = [row.dedupe_key for row in rows if row.dedupe_key]
    db.add_all(rows)
    try:
        await db.flush()
    except IntegrityError as exc:
        logger.warning("Ledger batch rejected for user %s (keys=%s)", user_id, keys)
        raise LedgerConstraintError("Ledger uniqueness violated", dedupe_keys=keys) from exc
    return rows


async def sum_for_user(db: AsyncSession, user_id: str) -> int:
    """Authoritative XP total: the sum of the user's ledger rows."""
    result = await db.execute(
        select(func.coalesce(func.sum(XPTransaction.xp_amount), 0)).where(
            XPTransaction.user_id == user_id
        )
    )
    return int(result.scalar_one())


async def query_transactions(
    db: AsyncSession,
    user_id: str,
    since: datetime | None = None,
    action: str | None = None,
    limit: int | None = None,
) -> list[XPTransaction]:
    """Ledger rows for a user, newest first."""
    stmt = select(XPTransaction).where(XPTransaction.user_id == user_id)
    if since is not None:
        stmt = stmt.where(XPTransaction.created_at >= since)
    if action is not None:
        stmt = stmt.where(XPTransaction.action == action)
    stmt = stmt.order_by(XPTransaction.created_at.desc(), XPTransaction.id.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def amounts_for_challenge(db: AsyncSession, user_id: str, challenge_id: int) -> dict[str, int]:
    """XP per action already recorded against one (user, challenge) pair."""
    result = await db.execute(
        select(XPTransaction.action, func.sum(XPTransaction.xp_amount))
        .where(XPTransaction.user_id == user_id, XPTransaction.challenge_id == challenge_id)
        .group_by(XPTransaction.action)
    )
    return {action: int(amount) for action, amount in result.all()}


async def get_cached_total(db: AsyncSession, user_id: str) -> int:
    """Cached total from ``user_xp_totals`` (0 when the user has no row yet)."""
    result = await db.execute(select(UserXPTotal.total_xp).where(UserXPTotal.user_id == user_id))
    total = result.scalar_one_or_none()
    return int(total) if total is not None else 0


async def add_to_total(db: AsyncSession, user_id: str, amount: int) -> int:
    """Atomically add ``amount`` to the cached total, creating the row if absent."""
    now = datetime.now(timezone.utc)
    stmt = insert_for(db, UserXPTotal).values(user_id=user_id, total_xp=amount, updated_at=now)
    stmt = stmt.on_conflict_do_update(
        index_elements=[UserXPTotal.user_id],
        set_={
            "total_xp": UserXPTotal.total_xp + stmt.excluded.total_xp,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    await db.execute(stmt)
    return await get_cached_total(db, user_id)


async def reconcile_total(db: AsyncSession, user_id: str) -> dict:
    """Rewrite the cached total from the ledger. Does not commit.

    Returns ``{"user_id", "cached", "ledger", "corrected"}``.
    """
    cached = await get_cached_total(db, user_id)
    ledger = await sum_for_user(db, user_id)
    corrected = cached != ledger
    if corrected:
        now = datetime.now(timezone.utc)
        stmt = insert_for(db, UserXPTotal).values(user_id=user_id, total_xp=ledger, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserXPTotal.user_id],
            set_={"total_xp": stmt.excluded.total_xp, "updated_at": stmt.excluded.updated_at},
        )
        await db.execute(stmt)
        logger.warning("Reconciled XP total for %s: cached=%d ledger=%d", user_id, cached, ledger)
    return {"user_id": user_id, "cached": cached, "ledger": ledger, "corrected": corrected}


async def find_drifted_users(db: AsyncSession, limit: int | None = None) -> list[str]:
    """Users whose cached total differs from the ledger sum (or who have no cached row)."""
    ledger_sums = (
        select(
            XPTransaction.user_id.label("user_id"),
            func.sum(XPTransaction.xp_amount).label("ledger_total"),
        )
        .group_by(XPTransaction.user_id)
        .subquery()
    )
    stmt = (
        select(ledger_sums.c.user_id)
        .outerjoin(UserXPTotal, UserXPTotal.user_id == ledger_sums.c.user_id)
        .where(func.coalesce(UserXPTotal.total_xp, -1) != ledger_sums.c.ledger_total)
        .order_by(ledger_sums.c.user_id)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    drifted = list(result.scalars().all())

    # Cached rows with no ledger rows at all must be 0.
    orphan_stmt = (
        select(UserXPTotal.user_id)
        .where(
            UserXPTotal.total_xp != 0,
            ~UserXPTotal.user_id.in_(select(XPTransaction.user_id)),
        )
        .order_by(UserXPTotal.user_id)
    )
    orphans = (await db.execute(orphan_stmt)).scalars().all()
    return drifted + [u for u in orphans if u not in drifted]
