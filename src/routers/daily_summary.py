"""Daily summary read and (re)generation endpoints."""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Query

from src.dependencies import CurrentUser, Orchestrator
from src.errors import BadRequest
from src.models.base import ErrorDetail
from src.models.daily_summary import (
    DailySummaryRangeResponse,
    DailySummaryRequest,
    DailySummaryResponse,
    DayOutcome,
)

router = APIRouter(
    prefix="/daily-summary",
    tags=["daily-summary"],
    responses={400: {"model": ErrorDetail}, 401: {"model": ErrorDetail}},
)


@router.get("", response_model=DailySummaryResponse)
async def get_daily_summary(
    user: CurrentUser,
    orchestrator: Orchestrator,
    target_date: date | None = Query(default=None, alias="date"),
) -> Any:
    if target_date is None:
        raise BadRequest("Date parameter required")
    row = await orchestrator.get_summary(user.user_id, target_date)
    return {"summary": row}


@router.post("")
async def generate_daily_summary(
    body: DailySummaryRequest, user: CurrentUser, orchestrator: Orchestrator
) -> Any:
    if body.date is not None:
        summary = await orchestrator.run_for_date(user.user_id, body.date)
        return {"success": True, "summary": summary.model_dump(mode="json")}

    try:
        result = await orchestrator.run_for_range(user.user_id, body.start_date, body.end_date)
    except ValueError as exc:
        raise BadRequest(str(exc)) from exc

    return DailySummaryRangeResponse(
        success=not result.failures,
        count=result.count,
        failed=len(result.failures),
        summaries=[s.model_dump(mode="json") for s in result.summaries],
        results=[DayOutcome(date=r.date, success=r.success, error=r.error) for r in result.results],
    ).model_dump(mode="json")
