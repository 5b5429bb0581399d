"""arq worker: ledger/total reconciliation.

Run with ``arq xpl.progress.worker.WorkerSettings``. The cron job finds users
whose cached ``user_xp_totals`` row disagrees with the ledger and rewrites it
from the ledger.
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from xpl.config import get_settings
from xpl.database import close_db, get_session_factory, init_db
from xpl.progress.ledger_service import find_drifted_users, reconcile_total
from xpl.progress.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)


async def reconcile_totals(
    session_factory: async_sessionmaker[AsyncSession],
    batch_size: int = 500,
    retry_policy: RetryPolicy | None = None,
) -> list[dict]:
    """Correct every drifted cached total, one user per transaction.

    Returns the corrections made.
    """
    retry_policy = retry_policy or RetryPolicy.from_settings()
    async with session_factory() as db:
        drifted = await find_drifted_users(db, limit=batch_size)

    corrections = []
    for user_id in drifted:

        async def _fix(user_id: str = user_id) -> dict:
            async with session_factory() as db:
                try:
                    outcome = await reconcile_total(db, user_id)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
                return outcome

        outcome = await retry_policy.execute(
            _fix,
            operation_name="ledger.reconcile",
            context={"user_id": user_id},
        )
        if outcome["corrected"]:
            corrections.append(outcome)

    if corrections:
        logger.warning("Reconciled %d drifted XP totals", len(corrections))
    return corrections


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["session_factory"] = get_session_factory()
    logger.info("Reconciliation worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    await close_db()
    logger.info("Reconciliation worker shut down")


async def reconcile_xp_totals(ctx: dict) -> int:  # type: ignore[type-arg]
    """Scheduled task: rewrite drifted XP totals from the ledger."""
    settings = get_settings()
    corrections = await reconcile_totals(ctx["session_factory"], batch_size=settings.reconcile_batch_size)
    return len(corrections)


class WorkerSettings:
    """arq worker settings for ledger reconciliation."""

    functions = [reconcile_xp_totals]
    cron_jobs = [
        # Every 15 minutes
        cron(reconcile_xp_totals, minute={0, 15, 30, 45}, run_at_startup=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 1
    job_timeout = 600
