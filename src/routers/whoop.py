"""Whoop connection, sync, and cached-data endpoints."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any
from urllib.parse import quote

from fastapi import APIRouter, Query, Request
from fastapi.responses import RedirectResponse

from src.dependencies import AppSettings, CurrentUser, SyncEngine, Tokens
from src.models.base import ErrorDetail
from src.models.whoop import (
    WhoopDataResponse,
    WhoopDayRead,
    WhoopStatusResponse,
    WhoopSyncRequest,
    WhoopWorkoutRead,
    WhoopWorkoutsResponse,
)

router = APIRouter(
    prefix="/whoop",
    tags=["whoop"],
    responses={401: {"model": ErrorDetail}, 502: {"model": ErrorDetail}},
)
logger = logging.getLogger("healthlog.whoop")


def _base_url(request: Request, app_url: str) -> str:
    return (app_url or str(request.base_url)).rstrip("/")


# ---------- OAuth ----------

@router.get("/auth")
async def begin_authorization(user: CurrentUser, tokens: Tokens) -> RedirectResponse:
    outcome = await tokens.begin_authorization(user.user_id)
    return RedirectResponse(outcome.authorization_url, status_code=307)


@router.get("/callback")
async def authorization_callback(
    request: Request,
    settings: AppSettings,
    tokens: Tokens,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    error_description: str | None = Query(default=None),
) -> RedirectResponse:
    """Vendor redirect target.  Public: identity comes from the stored state."""
    outcome = await tokens.complete_authorization(code, state, error, error_description)
    base = _base_url(request, settings.app_url)
    if outcome.error:
        return RedirectResponse(f"{base}/?whoop_error={quote(outcome.error)}", status_code=307)
    return RedirectResponse(f"{base}/?whoop_connected=true", status_code=307)


@router.post("/disconnect")
async def disconnect(user: CurrentUser, tokens: Tokens) -> dict:
    await tokens.delete_credential(user.user_id)
    return {"success": True}


@router.get("/status", response_model=WhoopStatusResponse, response_model_exclude_none=True)
async def connection_status(user: CurrentUser, tokens: Tokens) -> Any:
    status = await tokens.connection_status(user.user_id)
    return WhoopStatusResponse(
        connected=status.connected,
        state=status.state.value,
        expires_at=status.expires_at,
        is_expiring_soon=status.is_expiring_soon if status.connected else None,
    )


# ---------- Sync ----------

@router.post("/sync")
async def sync_days(
    user: CurrentUser, engine: SyncEngine, settings: AppSettings, body: WhoopSyncRequest | None = None
) -> dict:
    days = (body.days if body else None) or settings.whoop_default_sync_days
    start_date, end_date = engine.lookback_window(days)
    result = await engine.sync_range(user.user_id, start_date, end_date)
    return result.to_dict()


@router.post("/workouts/sync")
async def sync_workouts(
    user: CurrentUser, engine: SyncEngine, settings: AppSettings, body: WhoopSyncRequest | None = None
) -> dict:
    days = (body.days if body else None) or settings.whoop_default_workout_days
    result = await engine.sync_workouts(user.user_id, days)
    return result.to_dict()


# ---------- Cached data ----------

@router.get("/data", response_model=WhoopDataResponse)
async def cached_day(
    user: CurrentUser,
    engine: SyncEngine,
    target_date: date = Query(alias="date"),
) -> Any:
    day = await engine.get_cached_day(user.user_id, target_date)
    return {"data": WhoopDayRead.model_validate(day) if day else None}


@router.get("/workouts", response_model=WhoopWorkoutsResponse)
async def cached_workouts(
    user: CurrentUser,
    engine: SyncEngine,
    target_date: date | None = Query(default=None, alias="date"),
    unlinked: bool = Query(default=False),
) -> Any:
    workouts = await engine.list_cached_workouts(user.user_id, target_date, unlinked_only=unlinked)
    return {
        "workouts": [WhoopWorkoutRead.model_validate(w) for w in workouts],
        "count": len(workouts),
    }
