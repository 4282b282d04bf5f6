"""
hourglass.engine.accrual — Points Accrual Calculator
=====================================================

Pure calculation, no Discord I/O, no DB I/O.

Policy (see :mod:`hourglass.constants`):

* **Tier rule** — the first cumulative hour of a member's local day earns
  ``FIRST_HOUR_POINTS`` per hour; every hour after that earns
  ``REST_HOURS_POINTS``.  Points are the integral of that rate from zero to
  the cumulative daily total.
* **55-minute rule** — the *daily total* (never a single session) is rounded
  to whole hours before tier evaluation: a remainder of 55 minutes or more
  rounds up, anything less rounds down.
* **Daily cap** — once the day reaches ``MAX_HOURS_PER_DAY`` no more points
  accrue.  A session that crosses the cap keeps only the share of its points
  that falls under the remaining allowance.  Minutes are always recorded in
  full.

A session's points are ``tier(new daily total) - tier(old daily total)``, so
the order in which sessions arrive never changes what the day is worth.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from hourglass.constants import (
    FIRST_HOUR_POINTS,
    MAX_HOURS_PER_DAY,
    REST_HOURS_POINTS,
    ROUND_UP_MINUTES,
)

__all__ = [
    "AccrualResult",
    "DAILY_CAP_MINUTES",
    "calculate_session_points",
    "daily_points_for_minutes",
    "points_for_hours",
    "round_hours",
    "round_minutes",
    "tier_points",
]

DAILY_CAP_MINUTES = MAX_HOURS_PER_DAY * 60


@dataclass(frozen=True, slots=True)
class AccrualResult:
    """Points owed for one session increment."""

    points: int
    limit_reached: bool          # the day is at or past the cap after this session
    already_capped: bool         # the day was already capped before this session
    daily_minutes: int           # cumulative minutes after this session
    session_points_uncapped: int

    @property
    def daily_hours(self) -> float:
        return self.daily_minutes / 60


# ---------------------------------------------------------------------------
# Rounding
# ---------------------------------------------------------------------------
def round_minutes(minutes: float) -> int:
    """Whole hours for *minutes* under the 55-minute rule."""
    hours, remainder = divmod(minutes, 60)
    return int(hours) + 1 if remainder >= ROUND_UP_MINUTES else int(hours)


def round_hours(hours: float) -> int:
    """Whole hours for a fractional *hours* value under the 55-minute rule.

    >>> round_hours(70 / 60), round_hours(115 / 60)
    (1, 2)
    """
    # Rounded to the microsecond so 1.91666... * 60 lands on 115, not 114.999
    return round_minutes(round(hours * 60, 6))


# ---------------------------------------------------------------------------
# Tier function
# ---------------------------------------------------------------------------
def tier_points(hours: float) -> float:
    """Cumulative points for a day of *hours*, evaluated from zero."""
    if hours <= 0:
        return 0
    first = min(hours, 1)
    rest = max(hours - 1, 0)
    return first * FIRST_HOUR_POINTS + rest * REST_HOURS_POINTS


def points_for_hours(starting_hours: float, hours: float) -> float:
    """Points for *hours* of activity on top of *starting_hours* already logged."""
    if hours <= 0:
        return 0
    return tier_points(starting_hours + hours) - tier_points(starting_hours)


def daily_points_for_minutes(total_minutes: int) -> int:
    """What a whole day of *total_minutes* is worth (rounded, then capped).

    This is the only function used to fill ``daily_voice_stats.points_earned``.
    """
    capped = min(max(total_minutes, 0), DAILY_CAP_MINUTES)
    return int(tier_points(round_minutes(capped)))


# ---------------------------------------------------------------------------
# Session increment
# ---------------------------------------------------------------------------
def calculate_session_points(
    current_daily_minutes: int,
    session_minutes: int,
    *,
    apply_rounding: bool = True,
) -> AccrualResult:
    """Points owed for a session of *session_minutes* on top of the day so far.

    Parameters
    ----------
    current_daily_minutes:
        Minutes already credited to the member's local day.
    session_minutes:
        Whole minutes of the session being closed.
    apply_rounding:
        ``False`` for the artificial half of a midnight split: the daily
        totals are evaluated unrounded and each side is floored.
    """
    old = max(int(current_daily_minutes), 0)
    session = max(int(session_minutes), 0)
    new = old + session

    if apply_rounding:
        old_points = int(tier_points(round_minutes(old)))
        new_points = int(tier_points(round_minutes(new)))
    else:
        old_points = math.floor(tier_points(old / 60))
        new_points = math.floor(tier_points(new / 60))
    uncapped = max(new_points - old_points, 0)

    if session == 0:
        return AccrualResult(
            points=0,
            limit_reached=old >= DAILY_CAP_MINUTES,
            already_capped=old >= DAILY_CAP_MINUTES,
            daily_minutes=new,
            session_points_uncapped=0,
        )

    if old >= DAILY_CAP_MINUTES:
        return AccrualResult(
            points=0,
            limit_reached=True,
            already_capped=True,
            daily_minutes=new,
            session_points_uncapped=uncapped,
        )

    points = uncapped
    if new > DAILY_CAP_MINUTES:
        # Proportional credit for the in-cap share of the session
        points = uncapped * (DAILY_CAP_MINUTES - old) // session

    return AccrualResult(
        points=points,
        limit_reached=new >= DAILY_CAP_MINUTES,
        already_capped=False,
        daily_minutes=new,
        session_points_uncapped=uncapped,
    )
