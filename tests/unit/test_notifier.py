"""Notification emitter: payload shape and best-effort delivery."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from xpl.progress.notifier import channel_for, publish_completion, publish_objective_results
from xpl.progress.rank_thresholds import compute_rank

RESULTS = [
    {"objective_key": "pod_exists", "passed": True, "message": None},
    {"objective_key": "pod_running", "passed": False, "message": "not ready"},
]


def _completion() -> dict:
    return {"xp_awarded": 100, "total_xp": 100, "rank": compute_rank(100), "rank_up": False, "cached": False}


class TestNotifier:

    def test_channel_keyed_by_user_and_slug(self):
        assert channel_for("u-1", "hello-pod") == "challenge:u-1:hello-pod"

    @pytest.mark.asyncio
    async def test_no_redis_is_noop(self):
        assert await publish_objective_results(None, "u-1", "hello-pod", RESULTS) == 0
        assert await publish_completion(None, "u-1", "hello-pod", _completion()) is False

    @pytest.mark.asyncio
    async def test_one_message_per_objective(self):
        redis = MagicMock()
        redis.publish = AsyncMock(return_value=1)

        published = await publish_objective_results(redis, "u-1", "hello-pod", RESULTS)

        assert published == 2
        channel, raw = redis.publish.call_args_list[1].args
        assert channel == "challenge:u-1:hello-pod"
        payload = json.loads(raw)
        assert payload["event"] == "objective"
        assert payload["objective_key"] == "pod_running"
        assert payload["passed"] is False
        assert "timestamp" in payload

    @pytest.mark.asyncio
    async def test_completion_event(self):
        redis = MagicMock()
        redis.publish = AsyncMock(return_value=1)

        assert await publish_completion(redis, "u-1", "hello-pod", _completion()) is True
        payload = json.loads(redis.publish.call_args.args[1])
        assert payload["event"] == "completed"
        assert payload["xp_awarded"] == 100
        assert payload["rank"] == "Novice"

    @pytest.mark.asyncio
    async def test_publish_failure_is_swallowed(self):
        redis = MagicMock()
        redis.publish = AsyncMock(side_effect=RedisConnectionError("down"))

        assert await publish_objective_results(redis, "u-1", "hello-pod", RESULTS) == 0
        assert await publish_completion(redis, "u-1", "hello-pod", _completion()) is False
