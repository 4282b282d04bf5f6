"""
hourglass.engine.streak — Consecutive-Day Streak State Machine
===============================================================

Pure logic, no DB I/O.  Persistence lives in
:mod:`hourglass.services.streak_service`.

A member's streak is a counter plus the last local day that qualified.  On a
qualifying event dated ``D`` in the member's zone::

    no prior day   → counter = 1
    D - last == 0  → no-op (no write)
    D - last == 1  → counter + 1
    D - last  > 1  → counter = 1
    D - last  < 0  → no-op (clock moved backwards, e.g. a westward zone change)

``longest`` follows ``max(longest, counter)`` whenever the counter changes.

Right after a timezone change the same instant can fall on different dates
in the old and new zone.  Callers pass the old-zone date as an
*alternate day*; the most favourable reading wins (same day, then next
day, then gap).
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import date

__all__ = ["StreakOutcome", "StreakResult", "StreakState", "advance_streak"]


class StreakOutcome(enum.StrEnum):
    STARTED = "started"
    INCREMENTED = "incremented"
    RESET = "reset"
    UNCHANGED = "unchanged"


@dataclass(frozen=True, slots=True)
class StreakState:
    current: int = 0
    longest: int = 0
    last_day: date | None = None


@dataclass(frozen=True, slots=True)
class StreakResult:
    state: StreakState
    outcome: StreakOutcome

    @property
    def changed(self) -> bool:
        return self.outcome is not StreakOutcome.UNCHANGED


def _with_counter(state: StreakState, counter: int, day: date) -> StreakState:
    return replace(
        state,
        current=counter,
        longest=max(state.longest, counter),
        last_day=day,
    )


def advance_streak(
    state: StreakState,
    event_day: date,
    *,
    alternate_days: Iterable[date] = (),
) -> StreakResult:
    """Apply one qualifying event dated *event_day* to *state*.

    Parameters
    ----------
    state:
        The member's stored streak.
    event_day:
        Local date of the qualifying event in the zone being evaluated.
    alternate_days:
        Other plausible local dates for the same instant (the previous zone
        shortly after a timezone change).
    """
    if state.last_day is None:
        return StreakResult(_with_counter(state, 1, event_day), StreakOutcome.STARTED)

    candidates = [event_day, *alternate_days]
    deltas = {(day - state.last_day).days: day for day in candidates}

    if 0 in deltas:
        return StreakResult(state, StreakOutcome.UNCHANGED)
    if 1 in deltas:
        stored = max(event_day, deltas[1])
        return StreakResult(
            _with_counter(state, state.current + 1, stored),
            StreakOutcome.INCREMENTED,
        )
    if any(delta < 0 for delta in deltas):
        return StreakResult(state, StreakOutcome.UNCHANGED)
    return StreakResult(_with_counter(state, 1, event_day), StreakOutcome.RESET)
