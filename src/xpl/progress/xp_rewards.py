"""XP reward tables and the per-completion gain calculation."""

from __future__ import annotations

XP_REWARDS: dict[str, int] = {
    "easy": 50,
    "medium": 100,
    "hard": 200,
}

FIRST_CHALLENGE_BONUS = 50

STREAK_BONUS_PER_DAY = 10


def calculate_xp_gain(difficulty: str, is_first_challenge: bool, current_streak: int) -> dict:
    """Break down the XP earned for one completion.

    ``current_streak`` is the streak before this completion is recorded.
    """
    if difficulty not in XP_REWARDS:
        msg = f"Unknown difficulty: {difficulty}"
        raise ValueError(msg)
    if current_streak < 0:
        msg = "current_streak must be >= 0"
        raise ValueError(msg)

    base_xp = XP_REWARDS[difficulty]
    first_challenge_bonus = FIRST_CHALLENGE_BONUS if is_first_challenge else 0
    streak_bonus = current_streak * STREAK_BONUS_PER_DAY

    return {
        "base_xp": base_xp,
        "first_challenge_bonus": first_challenge_bonus,
        "streak_bonus": streak_bonus,
        "total": base_xp + first_challenge_bonus + streak_bonus,
    }
