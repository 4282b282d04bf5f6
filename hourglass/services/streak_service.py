"""
hourglass.services.streak_service — Streak persistence
=======================================================

Applies :func:`hourglass.engine.streak.advance_streak` to a member row that
the caller has already locked (session end, midnight split) and clears
lapsed streaks during the daily reset.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from hourglass.constants import REFERENCE_TIMEZONE
from hourglass.database.models import Member
from hourglass.engine.streak import StreakResult, StreakState, advance_streak
from hourglass.engine.timezones import (
    as_utc,
    is_valid_timezone,
    local_date,
    validate_timezone,
)

logger = logging.getLogger(__name__)

# How long after a timezone change the previous zone still counts
TIMEZONE_GRACE = timedelta(hours=24)


def streak_state(member: Member) -> StreakState:
    return StreakState(
        current=member.current_streak or 0,
        longest=member.longest_streak or 0,
        last_day=member.last_streak_date,
    )


def alternate_days(member: Member, instant: datetime) -> tuple[date, ...]:
    """Local date of *instant* in the member's previous zone, within the grace window."""
    previous = member.previous_timezone
    changed_at = as_utc(member.timezone_set_at)
    if not previous or changed_at is None or not is_valid_timezone(previous):
        return ()
    if abs(as_utc(instant) - changed_at) > TIMEZONE_GRACE:
        return ()
    return (local_date(previous, instant),)


def record_qualifying_day(
    member: Member,
    event_day: date | None = None,
    *,
    instant: datetime | None = None,
    zone: str | None = None,
) -> StreakResult:
    """Advance the streak of a locked *member* for a qualifying session.

    Parameters
    ----------
    member:
        Row already loaded ``FOR UPDATE`` in the caller's transaction.
    event_day:
        The qualifying session's local date in *zone*.  When omitted it is
        derived from *instant* in *zone*.
    instant:
        When the session qualified; also used to compute the previous-zone
        date right after a timezone change.
    zone:
        Zone the day is evaluated in.  Defaults to the member's stored zone
        but may differ from it, e.g. for a session that began before the
        member changed zones.

    Storage is only touched when the streak changes.
    """
    zone = zone or member.timezone or REFERENCE_TIMEZONE
    if event_day is None:
        if instant is None:
            raise ValueError("record_qualifying_day needs event_day or instant")
        event_day = local_date(validate_timezone(zone), instant)
    alternates = alternate_days(member, instant) if instant is not None else ()
    result = advance_streak(streak_state(member), event_day, alternate_days=alternates)

    if result.changed:
        member.current_streak = result.state.current
        member.longest_streak = result.state.longest
        member.last_streak_date = result.state.last_day
        logger.info(
            "Streak %s for %s: %d day(s) (zone %s)",
            result.outcome, member.id, result.state.current, zone,
        )
    return result


def lapse_if_broken(member: Member, today: date) -> bool:
    """Zero the current streak when no qualifying day is on or after yesterday."""
    last = member.last_streak_date
    if member.current_streak and (last is None or last < today - timedelta(days=1)):
        logger.info(
            "Streak lapsed for %s after %d day(s) (last qualifying day %s)",
            member.id, member.current_streak, last,
        )
        member.current_streak = 0
        return True
    return False
