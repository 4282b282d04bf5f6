"""
hourglass.services.stats_service — Stats & Leaderboards (read path)
====================================================================

One canonical computation per view, straight from the tables, fronted by
the :class:`~hourglass.engine.cache.StatsCache`.  Every write path
invalidates the keys it affects, so a cached value is at worst
``ttl_seconds`` stale and never wrong after a write.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from hourglass.database.models import DailyVoiceStats, House, Member, MonthlyVoiceSummary
from hourglass.engine.cache import (
    house_leaderboard_key,
    house_stats_key,
    leaderboard_key,
    user_stats_key,
)
from hourglass.engine.timezones import today_in, utc_now
from hourglass.services.member_service import MemberNotFoundError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from hourglass.engine.cache import StatsCache

logger = logging.getLogger(__name__)

PERIODS = ("monthly", "alltime")


def _check_period(period: str) -> str:
    if period not in PERIODS:
        raise ValueError(f"Unknown leaderboard period {period!r}; use one of {PERIODS}")
    return period


def _cached(cache: StatsCache | None, key: str, compute):
    if cache is None:
        return compute()
    return cache.get_or_compute(key, compute)


# ---------------------------------------------------------------------------
# Member stats
# ---------------------------------------------------------------------------
def compute_member_stats(engine: Engine, member_id: int, now: datetime | None = None) -> dict:
    now = now or utc_now()
    with Session(engine) as session:
        member = session.get(Member, member_id)
        if member is None:
            raise MemberNotFoundError(member_id)
        today = today_in(member.timezone, now)
        daily = session.get(DailyVoiceStats, (member_id, today))
        monthly_rank = (session.scalar(
            select(func.count()).select_from(Member)
            .where(Member.monthly_points > member.monthly_points)
        ) or 0) + 1
        history = session.scalars(
            select(MonthlyVoiceSummary)
            .where(MonthlyVoiceSummary.member_id == member_id)
            .order_by(MonthlyVoiceSummary.year_month.desc())
            .limit(6)
        ).all()

        return {
            "member_id": str(member.id),
            "display_name": member.display_name,
            "timezone": member.timezone,
            "house": member.house,
            "current_streak": member.current_streak,
            "longest_streak": member.longest_streak,
            "today": {
                "date": today.isoformat(),
                "minutes": daily.total_minutes if daily else 0,
                "points": daily.points_earned if daily else 0,
                "sessions": daily.session_count if daily else 0,
            },
            "monthly_hours": round(member.monthly_hours or 0.0, 2),
            "monthly_points": member.monthly_points,
            "monthly_rank": monthly_rank,
            "all_time_hours": round(member.all_time_hours or 0.0, 2),
            "all_time_points": member.all_time_points,
            "history": [
                {"month": h.year_month, "hours": round(h.total_hours, 2), "points": h.total_points}
                for h in history
            ],
        }


def get_member_stats(
    engine: Engine,
    member_id: int,
    *,
    cache: StatsCache | None = None,
    now: datetime | None = None,
) -> dict:
    """Stats for one member.

    Raises
    ------
    MemberNotFoundError
        If the member has never been seen.
    """
    return _cached(cache, user_stats_key(member_id),
                   lambda: compute_member_stats(engine, member_id, now))


# ---------------------------------------------------------------------------
# Member leaderboards
# ---------------------------------------------------------------------------
def compute_leaderboard(engine: Engine, period: str, limit: int = 10) -> list[dict]:
    _check_period(period)
    points_col = Member.monthly_points if period == "monthly" else Member.all_time_points
    hours_col = Member.monthly_hours if period == "monthly" else Member.all_time_hours
    with Session(engine) as session:
        rows = session.execute(
            select(Member.id, Member.display_name, Member.house, points_col, hours_col)
            .where(points_col > 0)
            .order_by(points_col.desc(), Member.id)
            .limit(limit)
        ).all()
    return [
        {
            "rank": i,
            "member_id": str(member_id),
            "display_name": name,
            "house": house,
            "points": points,
            "hours": round(hours or 0.0, 2),
        }
        for i, (member_id, name, house, points, hours) in enumerate(rows, 1)
    ]


def get_leaderboard(
    engine: Engine,
    period: str = "monthly",
    *,
    limit: int = 10,
    cache: StatsCache | None = None,
) -> list[dict]:
    """Top members by monthly or all-time points."""
    _check_period(period)
    board = _cached(cache, leaderboard_key(period),
                    lambda: compute_leaderboard(engine, period, limit=100))
    return board[:limit]


# ---------------------------------------------------------------------------
# House leaderboards
# ---------------------------------------------------------------------------
def compute_house_leaderboard(engine: Engine, period: str) -> list[dict]:
    _check_period(period)
    points_col = House.monthly_points if period == "monthly" else House.all_time_points
    with Session(engine) as session:
        counts = dict(session.execute(
            select(Member.house, func.count())
            .where(Member.house.is_not(None))
            .group_by(Member.house)
        ).all())
        houses = session.execute(
            select(House.name, points_col).order_by(points_col.desc(), House.name)
        ).all()
    return [
        {"rank": i, "name": name, "points": points, "member_count": counts.get(name, 0)}
        for i, (name, points) in enumerate(houses, 1)
    ]


def get_house_leaderboard(
    engine: Engine,
    period: str = "monthly",
    *,
    cache: StatsCache | None = None,
) -> list[dict]:
    _check_period(period)
    return _cached(cache, house_leaderboard_key(period),
                   lambda: compute_house_leaderboard(engine, period))


def get_house_stats(
    engine: Engine,
    name: str,
    *,
    cache: StatsCache | None = None,
) -> dict | None:
    """Totals and top contributors for one house, or ``None`` if unknown."""

    def compute() -> dict | None:
        with Session(engine) as session:
            house = session.get(House, name)
            if house is None:
                return None
            top = session.execute(
                select(Member.id, Member.display_name, Member.monthly_points)
                .where(Member.house == name, Member.monthly_points > 0)
                .order_by(Member.monthly_points.desc(), Member.id)
                .limit(5)
            ).all()
            return {
                "name": house.name,
                "monthly_points": house.monthly_points,
                "all_time_points": house.all_time_points,
                "last_monthly_reset": (
                    house.last_monthly_reset.isoformat() if house.last_monthly_reset else None
                ),
                "top_members": [
                    {"member_id": str(mid), "display_name": dn, "points": pts}
                    for mid, dn, pts in top
                ],
            }

    return _cached(cache, house_stats_key(name), compute)
