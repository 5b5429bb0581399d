"""Idempotency guard tests."""

import asyncio

import pytest
from sqlalchemy import func, select

from xpl.db.models import CompletionIdempotency
from xpl.progress.idempotency import claim_completion


class TestClaim:

    @pytest.mark.asyncio
    async def test_first_claim_acquires(self, db_session, seeded):
        challenge_id = seeded["hello-pod"]
        assert await claim_completion(db_session, "alice", challenge_id) is True
        row = (await db_session.execute(select(CompletionIdempotency))).scalar_one()
        assert (row.user_id, row.challenge_id) == ("alice", challenge_id)

    @pytest.mark.asyncio
    async def test_second_claim_is_rejected(self, db_session, seeded):
        challenge_id = seeded["hello-pod"]
        assert await claim_completion(db_session, "alice", challenge_id) is True
        assert await claim_completion(db_session, "alice", challenge_id) is False

    @pytest.mark.asyncio
    async def test_claims_are_per_pair(self, db_session, seeded):
        assert await claim_completion(db_session, "alice", seeded["hello-pod"]) is True
        assert await claim_completion(db_session, "alice", seeded["config-map"]) is True
        assert await claim_completion(db_session, "bob", seeded["hello-pod"]) is True

    @pytest.mark.asyncio
    async def test_concurrent_claims_single_winner(self, session_factory, seeded):
        challenge_id = seeded["network-policy"]

        async def _claim() -> bool:
            async with session_factory() as db:
                return await claim_completion(db, "alice", challenge_id)

        outcomes = await asyncio.gather(*(_claim() for _ in range(8)))

        assert outcomes.count(True) == 1
        async with session_factory() as db:
            count = await db.execute(select(func.count()).select_from(CompletionIdempotency))
            assert count.scalar_one() == 1
