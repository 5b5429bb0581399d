"""Ledger store and cached total tests."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from tests.helpers import NOW, assert_total_matches_ledger
from xpl.db.models import UserXPTotal, XPTransaction
from xpl.progress.errors import LedgerConstraintError
from xpl.progress.ledger_service import (
    add_to_total,
    append_transactions,
    find_drifted_users,
    get_cached_total,
    query_transactions,
    reconcile_total,
    sum_for_user,
)


def _tx(user_id: str, action: str, amount: int, dedupe_key: str | None = None, at=NOW) -> XPTransaction:
    return XPTransaction(
        user_id=user_id,
        action=action,
        xp_amount=amount,
        description=action,
        created_at=at,
        dedupe_key=dedupe_key,
    )


class TestAppend:

    @pytest.mark.asyncio
    async def test_batch_is_persisted(self, db_session):
        rows = [
            _tx("alice", "challenge_completed", 50),
            _tx("alice", "first_challenge", 50, "first_challenge:alice"),
        ]
        await append_transactions(db_session, rows)
        await db_session.commit()

        assert await sum_for_user(db_session, "alice") == 100
        assert all(r.id is not None for r in rows)

    @pytest.mark.asyncio
    async def test_second_first_challenge_rejects_whole_batch(self, db_session):
        await append_transactions(db_session, [_tx("alice", "first_challenge", 50, "first_challenge:alice")])
        await db_session.commit()

        with pytest.raises(LedgerConstraintError) as exc_info:
            await append_transactions(
                db_session,
                [
                    _tx("alice", "challenge_completed", 100),
                    _tx("alice", "first_challenge", 50, "first_challenge:alice"),
                ],
            )
        await db_session.rollback()

        assert exc_info.value.extra["dedupe_keys"] == ["first_challenge:alice"]
        count = await db_session.execute(
            select(func.count()).select_from(XPTransaction).where(XPTransaction.user_id == "alice")
        )
        assert count.scalar_one() == 1
        assert await sum_for_user(db_session, "alice") == 50

    @pytest.mark.asyncio
    async def test_unknown_action_rejected(self, db_session):
        with pytest.raises(ValueError):
            await append_transactions(db_session, [_tx("alice", "bonus", 10)])

    @pytest.mark.asyncio
    async def test_empty_batch(self, db_session):
        assert await append_transactions(db_session, []) == []


class TestQuery:

    @pytest.mark.asyncio
    async def test_filters_and_order(self, db_session):
        await append_transactions(
            db_session,
            [
                _tx("alice", "challenge_completed", 50, at=NOW - timedelta(days=3)),
                _tx("alice", "daily_streak", 10, "daily_streak:alice:2026-03-09", at=NOW - timedelta(days=1)),
                _tx("alice", "challenge_completed", 100, at=NOW),
                _tx("bob", "challenge_completed", 200, at=NOW),
            ],
        )
        await db_session.commit()

        rows = await query_transactions(db_session, "alice")
        assert [r.xp_amount for r in rows] == [100, 10, 50]

        recent = await query_transactions(db_session, "alice", since=NOW - timedelta(days=2))
        assert len(recent) == 2

        streaks = await query_transactions(db_session, "alice", action="daily_streak")
        assert [r.xp_amount for r in streaks] == [10]

    @pytest.mark.asyncio
    async def test_sum_for_unknown_user(self, db_session):
        assert await sum_for_user(db_session, "nobody") == 0


class TestCachedTotal:

    @pytest.mark.asyncio
    async def test_add_creates_then_increments(self, db_session):
        assert await get_cached_total(db_session, "alice") == 0
        assert await add_to_total(db_session, "alice", 100) == 100
        assert await add_to_total(db_session, "alice", 30) == 130
        await db_session.commit()
        assert await get_cached_total(db_session, "alice") == 130

    @pytest.mark.asyncio
    async def test_reconcile_ledger_wins(self, db_session):
        await append_transactions(db_session, [_tx("alice", "challenge_completed", 200)])
        await add_to_total(db_session, "alice", 200)
        await db_session.commit()

        # Manual drift
        total = await db_session.get(UserXPTotal, "alice")
        total.total_xp = 999
        await db_session.commit()

        assert await find_drifted_users(db_session) == ["alice"]

        outcome = await reconcile_total(db_session, "alice")
        await db_session.commit()

        assert outcome == {"user_id": "alice", "cached": 999, "ledger": 200, "corrected": True}
        await assert_total_matches_ledger(db_session, "alice")
        assert await find_drifted_users(db_session) == []

    @pytest.mark.asyncio
    async def test_missing_cached_row_is_drift(self, db_session):
        await append_transactions(db_session, [_tx("carol", "challenge_completed", 50)])
        await db_session.commit()

        assert await find_drifted_users(db_session) == ["carol"]
        outcome = await reconcile_total(db_session, "carol")
        await db_session.commit()
        assert outcome["corrected"] is True
        assert await get_cached_total(db_session, "carol") == 50

    @pytest.mark.asyncio
    async def test_reconcile_noop_when_in_sync(self, db_session):
        await append_transactions(db_session, [_tx("dave", "challenge_completed", 50)])
        await add_to_total(db_session, "dave", 50)
        await db_session.commit()

        outcome = await reconcile_total(db_session, "dave")
        assert outcome["corrected"] is False
