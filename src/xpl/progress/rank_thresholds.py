"""Rank thresholds and computation.

Ranks are derived purely from cumulative XP. Thresholds are ascending and the
first entry starts at 0.
"""

from __future__ import annotations

RANK_THRESHOLDS: list[dict] = [
    {"name": "Novice", "min_xp": 0},
    {"name": "Beginner", "min_xp": 300},
    {"name": "Advanced", "min_xp": 1200},
    {"name": "Expert", "min_xp": 3500},
    {"name": "Master", "min_xp": 7000},
    {"name": "Legend", "min_xp": 12000},
]


def compute_rank(total_xp: int) -> dict:
    """Compute rank info from total XP.

    Exactly reaching a threshold enters the new rank with 0% progress.
    """
    index = 0
    for i in range(len(RANK_THRESHOLDS) - 1, -1, -1):
        if total_xp >= RANK_THRESHOLDS[i]["min_xp"]:
            index = i
            break

    current = RANK_THRESHOLDS[index]

    # Max rank
    if index == len(RANK_THRESHOLDS) - 1:
        return {
            "name": current["name"],
            "min_xp": current["min_xp"],
            "next_rank_xp": None,
            "progress": 100,
        }

    next_rank = RANK_THRESHOLDS[index + 1]
    xp_into_rank = total_xp - current["min_xp"]
    xp_for_rank = next_rank["min_xp"] - current["min_xp"]

    return {
        "name": current["name"],
        "min_xp": current["min_xp"],
        "next_rank_xp": next_rank["min_xp"],
        "progress": _round_half_up(100 * xp_into_rank / xp_for_rank),
    }


def _round_half_up(value: float) -> int:
    # round() is banker's rounding; percentages round .5 up.
    return int(value + 0.5)
