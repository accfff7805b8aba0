"""Scheduled jobs.  Protected by ``Authorization: Bearer <CRON_SECRET>``, not the session."""

from __future__ import annotations

import logging
import secrets
from typing import Any

from fastapi import APIRouter, Depends, Request

from src.config import require
from src.daily.orchestrator import CronReport
from src.dependencies import AppSettings, Orchestrator, SyncOrchestrator
from src.errors import Unauthorized
from src.models.base import ErrorDetail

logger = logging.getLogger("healthlog.cron")


async def verify_cron_secret(request: Request, settings: AppSettings) -> None:
    expected = f"Bearer {require(settings, 'cron_secret')}"
    provided = request.headers.get("Authorization", "")
    if not secrets.compare_digest(provided.encode(), expected.encode()):
        logger.warning("Rejected cron call to %s", request.url.path)
        raise Unauthorized("Unauthorized")


router = APIRouter(
    prefix="/cron",
    tags=["cron"],
    dependencies=[Depends(verify_cron_secret)],
    responses={401: {"model": ErrorDetail}},
)


def _report(report: CronReport) -> dict[str, Any]:
    return {
        "success": True,
        "date": report.date.isoformat(),
        "message": report.message(),
        "synced": report.succeeded,
        "total": report.total,
        "results": [
            {"userId": r.user_id, "success": r.success, "error": r.error, **r.detail}
            for r in report.results
        ],
        "timestamp": report.finished_at.isoformat(),
    }


@router.get("/daily-sync")
async def daily_sync(orchestrator: Orchestrator) -> dict:
    return _report(await orchestrator.run_daily_cron())


@router.get("/whoop-sync")
async def whoop_sync(orchestrator: SyncOrchestrator, settings: AppSettings) -> dict:
    return _report(await orchestrator.run_whoop_cron(settings.whoop_cron_sync_days))
