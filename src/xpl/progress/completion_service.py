"""Completion orchestrator: submission, reward settlement, reset and progress reads.

Write ordering for a rewarded completion:

1. submission audit row (own commit)
2. idempotency claim (own commit, never retried)
3. ledger batch + cached total + progress row (one transaction, retried;
   an attempt whose COMMIT already landed is read back, not rewritten)

A pair whose claim already exists (e.g. after a reset) is marked completed
again without any XP writes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from xpl.config import get_settings
from xpl.db.models import Challenge, UserProgress, UserSubmission, XPTransaction
from xpl.db.upsert import insert_for
from xpl.progress.catalog import count_challenges, get_challenge_by_slug, objective_keys
from xpl.progress.errors import (
    AlreadyCompleted,
    ChallengeNotFound,
    DuplicateObjective,
    IncompleteSubmission,
    LedgerConstraintError,
    UnknownObjective,
)
from xpl.progress.idempotency import claim_completion
from xpl.progress.ledger_service import (
    add_to_total,
    amounts_for_challenge,
    append_transactions,
    completion_dedupe_key,
    get_cached_total,
    query_transactions,
)
from xpl.progress.notifier import publish_completion, publish_objective_results
from xpl.progress.rank_thresholds import compute_rank
from xpl.progress.retry_policy import RetryPolicy, storage_error
from xpl.progress.streak_service import (
    get_current_streak,
    has_streak_entry_on,
    streak_dedupe_key,
    utc_day,
)
from xpl.progress.xp_rewards import calculate_xp_gain

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChallengeRef:
    """Detached snapshot of a catalog row; survives session rollbacks."""

    id: int
    slug: str
    title: str
    difficulty: str
    objective_keys: frozenset[str]

    @classmethod
    def from_model(cls, challenge: Challenge) -> ChallengeRef:
        return cls(
            id=challenge.id,
            slug=challenge.slug,
            title=challenge.title,
            difficulty=challenge.difficulty,
            objective_keys=frozenset(objective_keys(challenge)),
        )


class CompletionService:
    """Challenge progress engine for one request/session."""

    def __init__(
        self,
        db: AsyncSession,
        redis: object | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self.db = db
        self.redis = redis
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.clock = clock or _utcnow
        self.streak_window_days = settings.streak_window_days
        self.recent_gains_limit = settings.recent_gains_limit

    # --- Lookups ---

    async def _require_challenge(self, slug: str) -> ChallengeRef:
        challenge = await get_challenge_by_slug(self.db, slug)
        if challenge is None:
            raise ChallengeNotFound(slug)
        return ChallengeRef.from_model(challenge)

    async def _get_progress(self, user_id: str, challenge_id: int) -> UserProgress | None:
        result = await self.db.execute(
            select(UserProgress)
            .where(
                UserProgress.user_id == user_id,
                UserProgress.challenge_id == challenge_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _is_first_challenge(self, user_id: str) -> bool:
        """No completed challenge on record and no first-challenge bonus ever granted."""
        completed = await self.db.execute(
            select(func.count())
            .select_from(UserProgress)
            .where(UserProgress.user_id == user_id, UserProgress.status == "completed")
        )
        if completed.scalar_one() > 0:
            return False
        bonus = await self.db.execute(
            select(XPTransaction.id)
            .where(XPTransaction.user_id == user_id, XPTransaction.action == "first_challenge")
            .limit(1)
        )
        return bonus.scalar_one_or_none() is None

    # --- Submit ---

    async def submit(self, user_id: str, slug: str, results: list[dict]) -> dict:
        """Validate a submission and settle the reward at most once per (user, challenge).

        ``results`` items carry ``objective_key``, ``passed`` and optionally
        ``message``. Returns either the failure variant
        (``success=False`` with ``failed_objectives``) or the completion result.
        """
        challenge = await self._require_challenge(slug)
        self._validate_objectives(challenge, results)

        now = self.clock()
        passed = all(r["passed"] for r in results)
        await self._record_submission(user_id, challenge.id, passed, results, now)
        await publish_objective_results(self.redis, user_id, slug, results)

        if not passed:
            return {
                "success": False,
                "message": "Validation failed",
                "failed_objectives": [
                    {"objective_key": r["objective_key"], "message": r.get("message")}
                    for r in results
                    if not r["passed"]
                ],
            }

        progress = await self._get_progress(user_id, challenge.id)
        if progress is not None and progress.status == "completed":
            raise AlreadyCompleted(slug)

        # Evaluated before this completion writes anything.
        is_first = await self._is_first_challenge(user_id)
        current_streak = await get_current_streak(self.db, user_id, now, self.streak_window_days)
        streak_logged_today = await has_streak_entry_on(self.db, user_id, utc_day(now))

        try:
            acquired = await claim_completion(self.db, user_id, challenge.id)
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise storage_error(exc, "completion.claim") from exc

        if not acquired:
            result = await self._settle_cached(user_id, challenge, now)
        else:
            result = await self._settle_award(
                user_id, challenge, now, is_first, current_streak, streak_logged_today
            )

        await publish_completion(self.redis, user_id, slug, result)
        return result

    @staticmethod
    def _validate_objectives(challenge: ChallengeRef, results: list[dict]) -> None:
        submitted = [r["objective_key"] for r in results]
        duplicates = sorted({key for key in submitted if submitted.count(key) > 1})
        if duplicates:
            raise DuplicateObjective(duplicates)
        registered = challenge.objective_keys
        missing = sorted(registered - set(submitted))
        if missing:
            raise IncompleteSubmission(missing)
        unknown = sorted(set(submitted) - registered)
        if unknown:
            raise UnknownObjective(unknown)

    async def _record_submission(
        self,
        user_id: str,
        challenge_id: int,
        passed: bool,
        results: list[dict],
        now: datetime,
    ) -> None:
        payload = [
            {"objective_key": r["objective_key"], "passed": r["passed"], "message": r.get("message")}
            for r in results
        ]

        async def _write() -> None:
            try:
                self.db.add(
                    UserSubmission(
                        user_id=user_id,
                        challenge_id=challenge_id,
                        passed=passed,
                        payload=payload,
                        created_at=now,
                    )
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        await self.retry_policy.execute(
            _write,
            operation_name="submission.record",
            context={"user_id": user_id, "challenge_id": challenge_id},
        )

    async def _settle_cached(self, user_id: str, challenge: ChallengeRef, now: datetime) -> dict:
        """Claim already held: restore the completed status without touching XP."""
        logger.info("Cached completion for user=%s challenge=%s", user_id, challenge.slug)

        async def _write() -> None:
            try:
                await self._upsert_completed(user_id, challenge.id, now, daily_limit_reached=False)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        await self.retry_policy.execute(
            _write,
            operation_name="progress.mark_completed",
            context={"user_id": user_id, "challenge_id": challenge.id},
        )

        total_xp = await get_cached_total(self.db, user_id)
        rank = compute_rank(total_xp)
        return {
            "success": True,
            "message": "Challenge already rewarded",
            "xp_awarded": 0,
            "total_xp": total_xp,
            "rank": rank,
            "previous_rank": rank["name"],
            "rank_up": False,
            "first_challenge": False,
            "streak_bonus": 0,
            "current_streak": await get_current_streak(self.db, user_id, now, self.streak_window_days),
            "daily_limit_reached": False,
            "cached": True,
            "xp_breakdown": None,
        }

    async def _settle_award(
        self,
        user_id: str,
        challenge: ChallengeRef,
        now: datetime,
        is_first: bool,
        current_streak: int,
        streak_logged_today: bool,
    ) -> dict:
        context = {"user_id": user_id, "challenge_id": challenge.id}
        try:
            gain, total_xp, streak_written = await self._write_award(
                user_id, challenge, now, is_first, current_streak, streak_logged_today
            )
        except LedgerConstraintError:
            # A concurrent completion of another challenge took today's streak
            # row or the first-challenge bonus. Re-read and rebuild once.
            logger.warning("Ledger batch collided, rebuilding for user=%s", user_id, extra=context)
            is_first = is_first and await self._is_first_bonus_available(user_id)
            streak_logged_today = await has_streak_entry_on(self.db, user_id, utc_day(now))
            gain, total_xp, streak_written = await self._write_award(
                user_id, challenge, now, is_first, current_streak, streak_logged_today
            )

        previous_rank = compute_rank(total_xp - gain["total"])
        rank = compute_rank(total_xp)
        rank_up = rank["min_xp"] > previous_rank["min_xp"]
        streak_after = await get_current_streak(self.db, user_id, now, self.streak_window_days)

        logger.info(
            "Awarded %d XP to user=%s for %s (total=%d, rank=%s)",
            gain["total"],
            user_id,
            challenge.slug,
            total_xp,
            rank["name"],
        )

        return {
            "success": True,
            "message": "Challenge completed!",
            "xp_awarded": gain["total"],
            "total_xp": total_xp,
            "rank": rank,
            "previous_rank": previous_rank["name"],
            "rank_up": rank_up,
            "first_challenge": gain["first_challenge_bonus"] > 0,
            "streak_bonus": gain["streak_bonus"],
            "current_streak": streak_after,
            "daily_limit_reached": not streak_written,
            "cached": False,
            "xp_breakdown": gain,
        }

    async def _is_first_bonus_available(self, user_id: str) -> bool:
        rows = await query_transactions(self.db, user_id, action="first_challenge", limit=1)
        return not rows

    async def _write_award(
        self,
        user_id: str,
        challenge: ChallengeRef,
        now: datetime,
        is_first: bool,
        current_streak: int,
        streak_logged_today: bool,
    ) -> tuple[dict, int, bool]:
        """Ledger batch, cached total and progress row in one retried transaction.

        Returns the gain, the new cached total and whether a streak row was
        written. An attempt first checks whether an earlier attempt already
        committed (the acknowledgement can be lost after the COMMIT landed)
        and reports that award instead of writing it again.
        """
        gain = calculate_xp_gain(
            challenge.difficulty,
            is_first_challenge=is_first,
            current_streak=0 if streak_logged_today else current_streak,
        )
        write_streak = not streak_logged_today

        async def _write() -> tuple[dict, int, bool]:
            try:
                landed = await self._landed_award(user_id, challenge)
                if landed is not None:
                    return landed
                rows = self._ledger_rows(user_id, challenge, now, gain, write_streak=write_streak)
                await append_transactions(self.db, rows)
                total = await add_to_total(self.db, user_id, gain["total"])
                await self._upsert_completed(
                    user_id, challenge.id, now, daily_limit_reached=streak_logged_today
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
            return gain, total, write_streak

        return await self.retry_policy.execute(
            _write,
            operation_name="completion.award",
            context={"user_id": user_id, "challenge_id": challenge.id},
        )

    async def _landed_award(self, user_id: str, challenge: ChallengeRef) -> tuple[dict, int, bool] | None:
        """Award already in the ledger for this pair, read back from its rows.

        The claim makes every ledger row tagged with the pair part of a single
        award, so the rows alone describe it.
        """
        amounts = await amounts_for_challenge(self.db, user_id, challenge.id)
        if "challenge_completed" not in amounts:
            return None
        logger.warning(
            "Award for user=%s challenge=%s already committed, not writing again",
            user_id,
            challenge.slug,
        )
        gain = {
            "base_xp": amounts["challenge_completed"],
            "first_challenge_bonus": amounts.get("first_challenge", 0),
            "streak_bonus": amounts.get("daily_streak", 0),
        }
        gain["total"] = gain["base_xp"] + gain["first_challenge_bonus"] + gain["streak_bonus"]
        return gain, await get_cached_total(self.db, user_id), "daily_streak" in amounts

    @staticmethod
    def _ledger_rows(
        user_id: str,
        challenge: ChallengeRef,
        now: datetime,
        gain: dict,
        write_streak: bool,
    ) -> list[XPTransaction]:
        rows = [
            XPTransaction(
                user_id=user_id,
                action="challenge_completed",
                xp_amount=gain["base_xp"],
                challenge_id=challenge.id,
                description=f"Completed {challenge.title}",
                created_at=now,
                dedupe_key=completion_dedupe_key(user_id, challenge.id),
            )
        ]
        if gain["first_challenge_bonus"] > 0:
            rows.append(
                XPTransaction(
                    user_id=user_id,
                    action="first_challenge",
                    xp_amount=gain["first_challenge_bonus"],
                    challenge_id=challenge.id,
                    description="First challenge bonus",
                    created_at=now,
                    dedupe_key=f"first_challenge:{user_id}",
                )
            )
        if write_streak:
            rows.append(
                XPTransaction(
                    user_id=user_id,
                    action="daily_streak",
                    xp_amount=gain["streak_bonus"],
                    challenge_id=challenge.id,
                    description="Daily streak",
                    created_at=now,
                    dedupe_key=streak_dedupe_key(user_id, utc_day(now)),
                )
            )
        return rows

    async def _upsert_completed(
        self,
        user_id: str,
        challenge_id: int,
        now: datetime,
        daily_limit_reached: bool,
    ) -> None:
        stmt = insert_for(self.db, UserProgress).values(
            user_id=user_id,
            challenge_id=challenge_id,
            status="completed",
            started_at=now,
            completed_at=now,
            daily_limit_reached=daily_limit_reached,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserProgress.user_id, UserProgress.challenge_id],
            set_={
                "status": "completed",
                "completed_at": now,
                "daily_limit_reached": daily_limit_reached,
                "updated_at": now,
            },
        )
        await self.db.execute(stmt)

    # --- Reset ---

    async def reset(self, user_id: str, slug: str) -> dict:
        """Delete progress and submissions for the pair. Ledger and claim are untouched."""
        challenge = await self._require_challenge(slug)

        async def _delete() -> tuple[int, int]:
            try:
                progress = await self.db.execute(
                    delete(UserProgress).where(
                        UserProgress.user_id == user_id,
                        UserProgress.challenge_id == challenge.id,
                    )
                )
                submissions = await self.db.execute(
                    delete(UserSubmission).where(
                        UserSubmission.user_id == user_id,
                        UserSubmission.challenge_id == challenge.id,
                    )
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
            return progress.rowcount or 0, submissions.rowcount or 0

        progress_deleted, submissions_deleted = await self.retry_policy.execute(
            _delete,
            operation_name="progress.reset",
            context={"user_id": user_id, "challenge_id": challenge.id},
        )
        logger.info(
            "Reset %s for user=%s (progress=%d, submissions=%d)",
            slug,
            user_id,
            progress_deleted,
            submissions_deleted,
        )
        return {
            "success": True,
            "message": "Challenge progress reset",
            "progress_deleted": progress_deleted,
            "submissions_deleted": submissions_deleted,
        }

    # --- Progress state ---

    async def start(self, user_id: str, slug: str) -> dict:
        """Move the pair to ``in_progress``. Completed progress is left as is."""
        challenge = await self._require_challenge(slug)
        progress = await self._get_progress(user_id, challenge.id)
        now = self.clock()

        if progress is not None:
            if progress.status == "completed":
                return {
                    "status": progress.status,
                    "started_at": progress.started_at,
                    "message": "Challenge already completed",
                }
            if progress.status == "in_progress":
                return {
                    "status": progress.status,
                    "started_at": progress.started_at,
                    "message": "Challenge already in progress",
                }
            progress.status = "in_progress"
            progress.started_at = now
            progress.updated_at = now
        else:
            progress = UserProgress(
                user_id=user_id,
                challenge_id=challenge.id,
                status="in_progress",
                started_at=now,
                updated_at=now,
            )
            self.db.add(progress)

        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise storage_error(exc, "progress.start") from exc

        return {"status": "in_progress", "started_at": now, "message": "Challenge started"}

    async def get_status(self, user_id: str, slug: str) -> dict:
        challenge = await self._require_challenge(slug)
        progress = await self._get_progress(user_id, challenge.id)
        if progress is None:
            return {"status": "not_started", "started_at": None, "completed_at": None}
        return {
            "status": progress.status,
            "started_at": progress.started_at,
            "completed_at": progress.completed_at,
        }

    async def get_submissions(self, user_id: str, slug: str) -> list[dict]:
        """Submission audit rows for the pair, newest first."""
        challenge = await self._require_challenge(slug)
        result = await self.db.execute(
            select(UserSubmission)
            .where(
                UserSubmission.user_id == user_id,
                UserSubmission.challenge_id == challenge.id,
            )
            .order_by(UserSubmission.created_at.desc(), UserSubmission.id.desc())
        )
        return [
            {
                "id": row.id,
                "passed": row.passed,
                "results": row.payload,
                "created_at": row.created_at,
            }
            for row in result.scalars()
        ]

    # --- XP / rank reads ---

    async def get_xp_and_rank(self, user_id: str) -> dict:
        total_xp = await get_cached_total(self.db, user_id)
        return {"total_xp": total_xp, "rank": compute_rank(total_xp)}

    async def get_streak(self, user_id: str) -> dict:
        now = self.clock()
        return {
            "current_streak": await get_current_streak(self.db, user_id, now, self.streak_window_days),
            "completed_today": await has_streak_entry_on(self.db, user_id, utc_day(now)),
        }

    async def get_recent_gains(self, user_id: str, limit: int | None = None) -> list[dict]:
        """Newest ledger rows with the related challenge's slug, title and difficulty."""
        limit = limit or self.recent_gains_limit
        result = await self.db.execute(
            select(XPTransaction, Challenge.slug, Challenge.title, Challenge.difficulty)
            .outerjoin(Challenge, Challenge.id == XPTransaction.challenge_id)
            .where(XPTransaction.user_id == user_id)
            .order_by(XPTransaction.created_at.desc(), XPTransaction.id.desc())
            .limit(limit)
        )
        return [
            {
                "id": tx.id,
                "action": tx.action,
                "xp_amount": tx.xp_amount,
                "description": tx.description,
                "created_at": tx.created_at,
                "challenge_slug": slug,
                "challenge_title": title,
                "difficulty": difficulty,
            }
            for tx, slug, title, difficulty in result.all()
        ]

    async def get_completion_stats(self, user_id: str) -> dict:
        total = await count_challenges(self.db)
        result = await self.db.execute(
            select(func.count())
            .select_from(UserProgress)
            .where(UserProgress.user_id == user_id, UserProgress.status == "completed")
        )
        completed = int(result.scalar_one())
        percentage = int(completed * 100 / total + 0.5) if total else 0
        return {"completed": completed, "total": total, "percentage": percentage}
