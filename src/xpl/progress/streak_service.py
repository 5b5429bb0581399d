"""Daily streak derivation over the XP ledger.

A streak is the number of consecutive UTC calendar days, ending today or
yesterday, on which the user has a ``daily_streak`` ledger row. Nothing here
writes; the values are recomputed from the ledger on every call.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from xpl.db.models import XPTransaction

DEFAULT_WINDOW_DAYS = 90


def utc_day(dt: datetime) -> date:
    """Truncate a timestamp to its UTC calendar day. Naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.date()
    return dt.astimezone(timezone.utc).date()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open UTC interval [start, end) covering ``day``."""
    start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def compute_streak(days: Iterable[date], today: date) -> int:
    """Count consecutive days ending at the most recent entry.

    The run must end today or yesterday; otherwise the streak is broken and
    the result is 0.
    """
    unique_days = sorted(set(days), reverse=True)
    if not unique_days:
        return 0

    most_recent = unique_days[0]
    if (today - most_recent).days > 1:
        return 0

    streak = 1
    expected = most_recent - timedelta(days=1)
    for day in unique_days[1:]:
        if day != expected:
            break
        streak += 1
        expected = day - timedelta(days=1)
    return streak


async def get_current_streak(
    db: AsyncSession,
    user_id: str,
    now: datetime | None = None,
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> int:
    """Current streak for a user, looking back ``window_days`` from ``now``."""
    if now is None:
        now = datetime.now(timezone.utc)

    since, _ = day_bounds(utc_day(now) - timedelta(days=window_days))
    result = await db.execute(
        select(XPTransaction.created_at).where(
            XPTransaction.user_id == user_id,
            XPTransaction.action == "daily_streak",
            XPTransaction.created_at >= since,
        )
    )
    return compute_streak((utc_day(ts) for ts in result.scalars()), utc_day(now))


async def has_streak_entry_on(db: AsyncSession, user_id: str, day: date) -> bool:
    """Whether the user already has a ``daily_streak`` row on the given UTC day."""
    start, end = day_bounds(day)
    result = await db.execute(
        select(XPTransaction.id)
        .where(
            XPTransaction.user_id == user_id,
            XPTransaction.action == "daily_streak",
            XPTransaction.created_at >= start,
            XPTransaction.created_at < end,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


def streak_dedupe_key(user_id: str, day: date) -> str:
    return f"daily_streak:{user_id}:{day.isoformat()}"
