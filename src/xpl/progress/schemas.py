"""Pydantic request/response models for progress endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

# --- Requests ---


class ObjectiveResult(BaseModel):
    model_config = {"extra": "forbid"}

    objective_key: str = Field(..., min_length=1, max_length=128)
    passed: bool
    message: str | None = Field(None, max_length=2000)


class SubmitRequest(BaseModel):
    """Submission payload. Keys must be unique; the set is checked against the catalog later."""

    model_config = {"extra": "forbid"}

    results: list[ObjectiveResult] = Field(..., min_length=1)

    @field_validator("results")
    @classmethod
    def unique_objective_keys(cls, v: list[ObjectiveResult]) -> list[ObjectiveResult]:
        seen: set[str] = set()
        duplicates: set[str] = set()
        for r in v:
            if r.objective_key in seen:
                duplicates.add(r.objective_key)
            seen.add(r.objective_key)
        if duplicates:
            msg = f"Duplicate objective keys: {', '.join(sorted(duplicates))}"
            raise ValueError(msg)
        return v


# --- Responses ---


class RankResponse(BaseModel):
    name: str
    min_xp: int
    next_rank_xp: int | None
    progress: int


class XPBreakdownResponse(BaseModel):
    base_xp: int
    first_challenge_bonus: int
    streak_bonus: int
    total: int


class SubmitSuccessResponse(BaseModel):
    success: bool = True
    message: str
    xp_awarded: int
    total_xp: int
    rank: RankResponse
    previous_rank: str
    rank_up: bool
    first_challenge: bool
    streak_bonus: int
    current_streak: int
    daily_limit_reached: bool
    cached: bool
    xp_breakdown: XPBreakdownResponse | None = None


class FailedObjective(BaseModel):
    objective_key: str
    message: str | None = None


class SubmitFailureResponse(BaseModel):
    success: bool = False
    message: str
    failed_objectives: list[FailedObjective]


class StartResponse(BaseModel):
    status: str
    started_at: datetime
    message: str | None = None


class StatusResponse(BaseModel):
    status: str
    started_at: datetime | None = None
    completed_at: datetime | None = None


class ResetResponse(BaseModel):
    success: bool = True
    message: str
    progress_deleted: int
    submissions_deleted: int


class SubmissionEntry(BaseModel):
    id: int
    passed: bool
    results: list[dict]
    created_at: datetime


class SubmissionsResponse(BaseModel):
    submissions: list[SubmissionEntry]


class XPAndRankResponse(BaseModel):
    total_xp: int
    rank: RankResponse


class StreakResponse(BaseModel):
    current_streak: int
    completed_today: bool


class RecentGainEntry(BaseModel):
    id: int
    action: str
    xp_amount: int
    description: str | None = None
    created_at: datetime
    challenge_slug: str | None = None
    challenge_title: str | None = None
    difficulty: str | None = None


class RecentGainsResponse(BaseModel):
    gains: list[RecentGainEntry]


class CompletionStatsResponse(BaseModel):
    completed: int
    total: int
    percentage: int


class RankEntry(BaseModel):
    name: str
    min_xp: int


class RankTableResponse(BaseModel):
    ranks: list[RankEntry]
