"""Challenge progress and XP endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from xpl.dependencies import get_completion_service, get_current_user_id
from xpl.progress.completion_service import CompletionService
from xpl.progress.rank_thresholds import RANK_THRESHOLDS
from xpl.progress.schemas import (
    CompletionStatsResponse,
    RankEntry,
    RankTableResponse,
    RecentGainEntry,
    RecentGainsResponse,
    ResetResponse,
    StartResponse,
    StatusResponse,
    StreakResponse,
    SubmissionEntry,
    SubmissionsResponse,
    SubmitFailureResponse,
    SubmitRequest,
    SubmitSuccessResponse,
    XPAndRankResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Progress"])


# ── Challenge lifecycle ──


@router.post("/challenges/{slug}/start", response_model=StartResponse)
async def start_challenge(
    slug: str,
    user_id: str = Depends(get_current_user_id),
    service: CompletionService = Depends(get_completion_service),
):
    return StartResponse(**await service.start(user_id, slug))


@router.get("/challenges/{slug}/status", response_model=StatusResponse)
async def challenge_status(
    slug: str,
    user_id: str = Depends(get_current_user_id),
    service: CompletionService = Depends(get_completion_service),
):
    return StatusResponse(**await service.get_status(user_id, slug))


@router.post(
    "/challenges/{slug}/submit",
    response_model=SubmitSuccessResponse | SubmitFailureResponse,
)
async def submit_challenge(
    slug: str,
    body: SubmitRequest,
    user_id: str = Depends(get_current_user_id),
    service: CompletionService = Depends(get_completion_service),
):
    """Submit objective results. Failed validation is a 200 with ``success: false``."""
    results = [r.model_dump() for r in body.results]
    outcome = await service.submit(user_id, slug, results)
    if not outcome["success"]:
        return SubmitFailureResponse(**outcome)
    return SubmitSuccessResponse(**outcome)


@router.post("/challenges/{slug}/reset", response_model=ResetResponse)
async def reset_challenge(
    slug: str,
    user_id: str = Depends(get_current_user_id),
    service: CompletionService = Depends(get_completion_service),
):
    """Clear progress and submissions. XP already earned is kept."""
    return ResetResponse(**await service.reset(user_id, slug))


@router.get("/challenges/{slug}/submissions", response_model=SubmissionsResponse)
async def challenge_submissions(
    slug: str,
    user_id: str = Depends(get_current_user_id),
    service: CompletionService = Depends(get_completion_service),
):
    rows = await service.get_submissions(user_id, slug)
    return SubmissionsResponse(submissions=[SubmissionEntry(**r) for r in rows])


# ── XP / streak / rank ──


@router.get("/progress/xp", response_model=XPAndRankResponse)
async def xp_and_rank(
    user_id: str = Depends(get_current_user_id),
    service: CompletionService = Depends(get_completion_service),
):
    return XPAndRankResponse(**await service.get_xp_and_rank(user_id))


@router.get("/progress/streak", response_model=StreakResponse)
async def streak(
    user_id: str = Depends(get_current_user_id),
    service: CompletionService = Depends(get_completion_service),
):
    return StreakResponse(**await service.get_streak(user_id))


@router.get("/progress/xp/recent", response_model=RecentGainsResponse)
async def recent_gains(
    limit: int | None = Query(None, ge=1, le=50),
    user_id: str = Depends(get_current_user_id),
    service: CompletionService = Depends(get_completion_service),
):
    rows = await service.get_recent_gains(user_id, limit)
    return RecentGainsResponse(gains=[RecentGainEntry(**r) for r in rows])


@router.get("/progress/completion", response_model=CompletionStatsResponse)
async def completion_stats(
    user_id: str = Depends(get_current_user_id),
    service: CompletionService = Depends(get_completion_service),
):
    return CompletionStatsResponse(**await service.get_completion_stats(user_id))


@router.get("/ranks", response_model=RankTableResponse)
async def rank_table():
    """Static rank threshold table."""
    return RankTableResponse(ranks=[RankEntry(**r) for r in RANK_THRESHOLDS])
