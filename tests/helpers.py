"""Test data and helpers shared across test modules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from xpl.progress.ledger_service import get_cached_total, sum_for_user
from xpl.progress.retry_policy import RetryPolicy

CHALLENGES = [
    {
        "slug": "hello-pod",
        "title": "Hello Pod",
        "difficulty": "easy",
        "objectives": [
            {"objective_key": "pod_exists", "title": "Pod exists"},
            {"objective_key": "pod_running", "title": "Pod is running"},
        ],
    },
    {
        "slug": "config-map",
        "title": "Mount a ConfigMap",
        "difficulty": "medium",
        "objectives": [
            {"objective_key": "configmap_exists", "title": "ConfigMap exists"},
            {"objective_key": "volume_mounted", "title": "Volume mounted"},
            {"objective_key": "env_loaded", "title": "Env loaded", "category": "log"},
        ],
    },
    {
        "slug": "network-policy",
        "title": "Lock down traffic",
        "difficulty": "hard",
        "objectives": [
            {"objective_key": "policy_applied", "title": "Policy applied"},
        ],
    },
]

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def passing(slug: str) -> list[dict]:
    """A fully passing result list for a seeded challenge."""
    challenge = next(c for c in CHALLENGES if c["slug"] == slug)
    return [{"objective_key": o["objective_key"], "passed": True, "message": None} for o in challenge["objectives"]]


class FrozenClock:
    """Controllable clock for day-boundary scenarios."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def fast_retry_policy(max_attempts: int = 5) -> RetryPolicy:
    """Retry policy that never sleeps."""

    async def _no_sleep(_seconds: float) -> None:
        return None

    return RetryPolicy(max_attempts=max_attempts, sleep=_no_sleep)


async def assert_total_matches_ledger(db: AsyncSession, user_id: str) -> None:
    assert await get_cached_total(db, user_id) == await sum_for_user(db, user_id)
