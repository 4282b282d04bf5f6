"""
hourglass.api.routes.admin — Admin endpoints (JWT‑protected)
=============================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from hourglass.api.deps import get_current_admin, get_scheduler, get_stats_cache, get_timezones
from hourglass.engine.cache import StatsCache
from hourglass.engine.timezones import InvalidTimezoneError
from hourglass.services.reset_service import ResetScheduler
from hourglass.services.timezone_service import TimezoneService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class TimezoneUpdate(BaseModel):
    timezone: str = Field(min_length=1, max_length=64)
    display_name: str | None = None


# ---------------------------------------------------------------------------
# Timezones
# ---------------------------------------------------------------------------
@router.put("/members/{member_id}/timezone")
def set_member_timezone(
    member_id: int,
    body: TimezoneUpdate,
    admin: dict = Depends(get_current_admin),
    timezones: TimezoneService = Depends(get_timezones),
    cache: StatsCache = Depends(get_stats_cache),
):
    """Set a member's timezone (creates the member if needed)."""
    try:
        change = timezones.set(member_id, body.timezone, display_name=body.display_name)
    except InvalidTimezoneError as exc:
        raise HTTPException(422, str(exc))
    cache.invalidate_member(member_id)
    logger.info(
        "Admin %s set timezone of %s to %s", admin.get("sub"), member_id, change.new_timezone,
    )
    return {
        "member_id": str(member_id),
        "old_timezone": change.old_timezone,
        "timezone": change.new_timezone,
        "changed_at": change.changed_at.isoformat(),
        "streak_preserved": change.streak_preserved,
    }


# ---------------------------------------------------------------------------
# Resets
# ---------------------------------------------------------------------------
def _reset_response(result) -> dict:
    if result is None:
        raise HTTPException(409, "A reset pass is already running")
    return result.to_dict()


@router.post("/resets/daily")
async def force_daily_reset(
    admin: dict = Depends(get_current_admin),
    scheduler: ResetScheduler = Depends(get_scheduler),
):
    logger.info("Admin %s forced a daily reset", admin.get("sub"))
    return _reset_response(await scheduler.force_daily_reset())


@router.post("/resets/monthly")
async def force_monthly_reset(
    admin: dict = Depends(get_current_admin),
    scheduler: ResetScheduler = Depends(get_scheduler),
):
    logger.info("Admin %s forced a monthly reset", admin.get("sub"))
    return _reset_response(await scheduler.force_monthly_reset())


# ---------------------------------------------------------------------------
# Scheduler status
# ---------------------------------------------------------------------------
@router.get("/scheduler/status")
async def scheduler_status(
    admin: dict = Depends(get_current_admin),
    scheduler: ResetScheduler = Depends(get_scheduler),
):
    return await scheduler.status()


@router.get("/scheduler/health")
async def scheduler_health(
    admin: dict = Depends(get_current_admin),
    scheduler: ResetScheduler = Depends(get_scheduler),
):
    return await scheduler.health_check()
