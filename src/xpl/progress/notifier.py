"""Best-effort validation/completion events over Redis pub/sub.

Delivery is at-most-once. A missing or failing Redis never affects the
request that triggered the event.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


def channel_for(user_id: str, slug: str) -> str:
    return f"challenge:{user_id}:{slug}"


async def publish_objective_results(
    redis: object | None,
    user_id: str,
    slug: str,
    results: list[dict],
) -> int:
    """Publish one event per objective result. Returns the number published."""
    if redis is None:
        return 0

    channel = channel_for(user_id, slug)
    published = 0
    for item in results:
        payload = {
            "event": "objective",
            "objective_key": item["objective_key"],
            "passed": item["passed"],
            "message": item.get("message"),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await redis.publish(channel, json.dumps(payload))  # type: ignore[union-attr]
        except Exception:
            logger.warning("Failed to publish objective event on %s", channel, exc_info=True)
            return published
        published += 1
    return published


async def publish_completion(
    redis: object | None,
    user_id: str,
    slug: str,
    result: dict,
) -> bool:
    """Publish the completion-level event for a settled submission."""
    if redis is None:
        return False

    channel = channel_for(user_id, slug)
    payload = {
        "event": "completed",
        "xp_awarded": result["xp_awarded"],
        "total_xp": result["total_xp"],
        "rank": result["rank"]["name"],
        "rank_up": result["rank_up"],
        "cached": result["cached"],
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    try:
        await redis.publish(channel, json.dumps(payload))  # type: ignore[union-attr]
    except Exception:
        logger.warning("Failed to publish completion event on %s", channel, exc_info=True)
        return False
    return True
