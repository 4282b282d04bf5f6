"""
hourglass.services.team_service — House aggregates
===================================================

House totals are the one piece of state many members write at once, so
every read-modify-write of a ``houses`` row happens under the advisory lock
``house:{name}``.  The lock is released on every path
(:func:`hourglass.database.engine.advisory_lock`), and contention surfaces
as :class:`~hourglass.database.engine.AdvisoryLockTimeout`.

The global reset zeroes monthly house points once per month on the
*server* calendar, independent of any member's local calendar.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from hourglass.database.engine import advisory_lock, get_session
from hourglass.database.models import House, HouseMonthlySummary
from hourglass.engine.timezones import as_utc, today_in, utc_now, year_month

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from hourglass.engine.cache import StatsCache

logger = logging.getLogger(__name__)


def house_lock_key(name: str) -> str:
    return f"house:{name}"


def add_house_points(session: Session, house: str, points: int) -> None:
    """Add *points* to a house's monthly and all-time totals.

    Runs inside the caller's transaction; creates the house row if it does
    not exist yet.  No-op for non-positive *points*.
    """
    if not house or points <= 0:
        return
    with advisory_lock(session, house_lock_key(house)):
        result = session.execute(
            update(House)
            .where(House.name == house)
            .values(
                monthly_points=House.monthly_points + points,
                all_time_points=House.all_time_points + points,
            )
        )
        if result.rowcount == 0:
            session.add(House(name=house, monthly_points=points, all_time_points=points))
        session.flush()
    logger.debug("House %s +%d points", house, points)


# ---------------------------------------------------------------------------
# Global (server-calendar) monthly reset
# ---------------------------------------------------------------------------
@dataclass
class GlobalResetResult:
    month: str
    reset: list[str] = field(default_factory=list)
    initialised: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.reset or self.initialised)


def run_global_house_reset(
    engine: Engine,
    server_timezone: str,
    *,
    now: datetime | None = None,
    cache: StatsCache | None = None,
) -> GlobalResetResult:
    """Zero monthly house points when the server calendar has entered a new month.

    Idempotent: a house whose cursor already falls in the current server
    month is skipped.  A house that has never been reset only gets its
    cursor stamped.  The closing month's total is archived to
    ``house_monthly_summaries`` before zeroing.
    """
    now = as_utc(now) if now is not None else utc_now()
    today = today_in(server_timezone, now)
    result = GlobalResetResult(month=year_month(today))

    with Session(engine) as session:
        names = session.scalars(select(House.name).order_by(House.name)).all()

    for name in names:
        with get_session(engine) as session, advisory_lock(session, house_lock_key(name)):
            house = session.scalar(
                select(House).where(House.name == name).with_for_update()
            )
            last = house.last_monthly_reset
            if last is None:
                house.last_monthly_reset = today
                result.initialised.append(name)
                continue
            if (last.year, last.month) == (today.year, today.month):
                continue

            closing = year_month(last)
            summary = session.scalar(
                select(HouseMonthlySummary).where(
                    HouseMonthlySummary.house_name == name,
                    HouseMonthlySummary.year_month == closing,
                )
            )
            if summary is None:
                session.add(HouseMonthlySummary(
                    house_name=name, year_month=closing, total_points=house.monthly_points,
                ))
            else:
                summary.total_points = house.monthly_points

            logger.info(
                "Global reset: house %s closed %s with %d points",
                name, closing, house.monthly_points,
            )
            house.monthly_points = 0
            house.last_monthly_reset = today
            result.reset.append(name)

    if result.reset and cache is not None:
        cache.invalidate_houses()
    return result
