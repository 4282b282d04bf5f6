"""
hourglass.api.routes.public — Read-only public endpoints
=========================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import Engine

from hourglass.api.deps import get_engine, get_stats_cache, get_timezones
from hourglass.engine.cache import StatsCache
from hourglass.engine.timezones import now_in, search_timezones
from hourglass.services.member_service import MemberNotFoundError
from hourglass.services.session_service import get_daily_limit_info
from hourglass.services.stats_service import (
    PERIODS,
    get_house_leaderboard,
    get_house_stats,
    get_leaderboard,
    get_member_stats,
)
from hourglass.services.timezone_service import TimezoneService

router = APIRouter(tags=["public"])


def _check_period(period: str) -> str:
    if period not in PERIODS:
        raise HTTPException(422, f"period must be one of {', '.join(PERIODS)}")
    return period


# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------
@router.get("/leaderboard/{period}")
def leaderboard(
    period: str,
    limit: int = Query(10, ge=1, le=100),
    engine: Engine = Depends(get_engine),
    cache: StatsCache = Depends(get_stats_cache),
):
    """Top members by monthly or all-time points."""
    _check_period(period)
    return {"period": period, "rows": get_leaderboard(engine, period, limit=limit, cache=cache)}


@router.get("/houses")
def houses(
    period: str = Query("monthly"),
    engine: Engine = Depends(get_engine),
    cache: StatsCache = Depends(get_stats_cache),
):
    _check_period(period)
    return {"period": period, "rows": get_house_leaderboard(engine, period, cache=cache)}


@router.get("/houses/{name}")
def house_detail(
    name: str,
    engine: Engine = Depends(get_engine),
    cache: StatsCache = Depends(get_stats_cache),
):
    stats = get_house_stats(engine, name, cache=cache)
    if stats is None:
        raise HTTPException(404, "House not found")
    return stats


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------
@router.get("/members/{member_id}/stats")
def member_stats(
    member_id: int,
    engine: Engine = Depends(get_engine),
    cache: StatsCache = Depends(get_stats_cache),
):
    try:
        return get_member_stats(engine, member_id, cache=cache)
    except MemberNotFoundError:
        raise HTTPException(404, "Member not found")


@router.get("/members/{member_id}/daily-limit")
def member_daily_limit(member_id: int, engine: Engine = Depends(get_engine)):
    """Today's voice hours and how much point-earning time is left."""
    try:
        return get_daily_limit_info(engine, member_id).to_dict()
    except MemberNotFoundError:
        raise HTTPException(404, "Member not found")


@router.get("/members/{member_id}/timezone")
def member_timezone(member_id: int, timezones: TimezoneService = Depends(get_timezones)):
    lookup = timezones.lookup(member_id)
    zone = lookup.or_default()
    return {
        "member_id": str(member_id),
        "timezone": zone,
        "is_default": not lookup.ok,
        "reason": lookup.reason,
        "local_time": now_in(zone).isoformat(),
    }


# ---------------------------------------------------------------------------
# Timezone search (autocomplete)
# ---------------------------------------------------------------------------
@router.get("/timezones")
def timezones_search(q: str = Query("", max_length=64), limit: int = Query(25, ge=1, le=100)):
    return {"zones": search_timezones(q, limit=limit)}
