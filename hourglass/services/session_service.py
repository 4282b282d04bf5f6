"""
hourglass.services.session_service — Session Lifecycle
=======================================================

Owns the lifecycle of one voice presence interval per (member, channel)::

    no interval ──start──▶ open ──end──▶ closed
                            │
                            └─split at local midnight─▶ closed + new open

Closing an interval is where everything happens, in one transaction with
the member row locked (``SELECT … FOR UPDATE``):

1. duration in whole minutes (floored)
2. points from :func:`hourglass.engine.accrual.calculate_session_points`
   against the interval's local day, never more than the rounded day is
   still owed
3. ``daily_voice_stats`` minutes += duration, points recomputed from minutes
4. member monthly / all-time totals, and the live daily mirror
5. house totals (advisory-locked, :mod:`hourglass.services.team_service`)
6. streak, when the interval lasted at least ``MIN_STREAK_MINUTES``

Notifications for the cap and for midnight splits are *returned*; the bot
delivers them after commit, so a failed DM never rolls anything back.

All operations take ``now`` explicitly (default: the current UTC instant).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hourglass.constants import (
    MAX_HOURS_PER_DAY,
    MIN_STREAK_MINUTES,
    RECOVERY_MAX_CREDIT_HOURS,
    RECOVERY_STALE_HOURS,
    REFERENCE_TIMEZONE,
)
from hourglass.database.engine import get_session
from hourglass.database.models import DailyVoiceStats, Member, VoiceSession
from hourglass.engine.accrual import (
    DAILY_CAP_MINUTES,
    AccrualResult,
    calculate_session_points,
    daily_points_for_minutes,
)
from hourglass.engine.events import (
    Notification,
    NotificationKind,
    PresenceAction,
    PresenceEvent,
)
from hourglass.engine.streak import StreakResult
from hourglass.engine.timezones import (
    as_utc,
    hours_until_midnight,
    local_date,
    start_of_day,
    today_in,
    utc_now,
)
from hourglass.services.member_service import (
    MemberNotFoundError,
    get_or_create_member,
    lock_member,
)
from hourglass.services.streak_service import record_qualifying_day
from hourglass.services.team_service import add_house_points

if TYPE_CHECKING:
    from collections.abc import Collection

    from sqlalchemy import Engine

    from hourglass.engine.cache import StatsCache

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result types (detached from the ORM session)
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class IntervalInfo:
    id: int
    member_id: int
    channel_id: int
    day: date
    joined_at: datetime
    created: bool = True


@dataclass
class ClosedInterval:
    interval_id: int
    member_id: int
    channel_id: int
    day: date
    duration_minutes: int
    points: int
    daily_minutes: int
    limit_reached: bool
    house: str | None = None
    streak: StreakResult | None = None
    notifications: list[Notification] = field(default_factory=list)


@dataclass
class SplitOutcome:
    closed: list[ClosedInterval]
    current: IntervalInfo

    @property
    def notifications(self) -> list[Notification]:
        return [n for c in self.closed for n in c.notifications]


@dataclass
class EndOutcome:
    """Result of :func:`end_session`: earlier-day pieces (if the interval
    crossed midnight) followed by the final closed piece."""

    splits: list[ClosedInterval]
    final: ClosedInterval

    @property
    def total_minutes(self) -> int:
        return sum(c.duration_minutes for c in (*self.splits, self.final))

    @property
    def total_points(self) -> int:
        return sum(c.points for c in (*self.splits, self.final))

    @property
    def notifications(self) -> list[Notification]:
        return [n for c in (*self.splits, self.final) for n in c.notifications]


@dataclass
class RecoveryResult:
    credited: list[ClosedInterval] = field(default_factory=list)
    discarded: list[int] = field(default_factory=list)
    kept_open: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class DailyLimitInfo:
    member_id: int
    timezone: str
    day: date
    daily_minutes: int
    allowance_hours_remaining: float
    hours_until_midnight: float
    remaining_hours: float
    limit_reached: bool
    can_earn_points: bool
    limited_by: str  # "allowance" | "time"

    @property
    def daily_hours(self) -> float:
        return self.daily_minutes / 60

    def to_dict(self) -> dict:
        return {
            "member_id": str(self.member_id),
            "timezone": self.timezone,
            "date": self.day.isoformat(),
            "daily_hours": round(self.daily_hours, 4),
            "allowance_hours_remaining": round(self.allowance_hours_remaining, 4),
            "hours_until_midnight": round(self.hours_until_midnight, 4),
            "remaining_hours": round(self.remaining_hours, 4),
            "limit_reached": self.limit_reached,
            "can_earn_points": self.can_earn_points,
            "limited_by": self.limited_by,
        }


def _info(interval: VoiceSession, created: bool) -> IntervalInfo:
    return IntervalInfo(
        id=interval.id,
        member_id=interval.member_id,
        channel_id=interval.channel_id,
        day=interval.date,
        joined_at=as_utc(interval.joined_at),
        created=created,
    )


def _now(now: datetime | None) -> datetime:
    return as_utc(now) if now is not None else utc_now()


def _open_interval(session: Session, member_id: int, channel_id: int) -> VoiceSession | None:
    return session.scalar(
        select(VoiceSession)
        .where(
            VoiceSession.member_id == member_id,
            VoiceSession.channel_id == channel_id,
            VoiceSession.left_at.is_(None),
        )
        .order_by(VoiceSession.joined_at.desc())
        .limit(1)
    )


# ---------------------------------------------------------------------------
# start
# ---------------------------------------------------------------------------
def start_session(
    engine: Engine,
    member_id: int,
    channel_id: int,
    *,
    display_name: str | None = None,
    channel_name: str | None = None,
    house: str | None = None,
    excluded_channel_ids: Collection[int] = frozenset(),
    now: datetime | None = None,
) -> IntervalInfo | None:
    """Open an interval for (member, channel), dated to the member's local today.

    A second start for a pair that already has an open interval is a no-op
    returning the existing interval (``created=False``).  Excluded channels
    return ``None``.
    """
    if channel_id in excluded_channel_ids:
        logger.debug("Ignoring excluded voice channel %s for %s", channel_id, member_id)
        return None
    now = _now(now)

    with get_session(engine) as session:
        member = get_or_create_member(session, member_id, display_name, house=house)
        existing = _open_interval(session, member_id, channel_id)
        if existing is not None:
            return _info(existing, created=False)

        zone = member.timezone or REFERENCE_TIMEZONE
        interval = VoiceSession(
            member_id=member_id,
            channel_id=channel_id,
            channel_name=channel_name,
            joined_at=now,
            date=local_date(zone, now),
        )
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(interval)
                session.flush()
        except IntegrityError:
            # Lost a race with a concurrent start; the open-interval index caught it
            existing = _open_interval(session, member_id, channel_id)
            if existing is None:
                raise
            return _info(existing, created=False)

        logger.info(
            "Voice session started: member=%s channel=%s date=%s (%s)",
            member_id, channel_id, interval.date, zone,
        )
        return _info(interval, created=True)


# ---------------------------------------------------------------------------
# close (shared by end, split and recovery)
# ---------------------------------------------------------------------------
def _daily_row(session: Session, member_id: int, day: date) -> DailyVoiceStats:
    row = session.get(DailyVoiceStats, (member_id, day))
    if row is None:
        row = DailyVoiceStats(
            member_id=member_id, date=day, total_minutes=0, session_count=0,
            points_earned=0, archived=False,
        )
        session.add(row)
    return row


def _credited_points(session: Session, member_id: int, day: date, exclude_id: int) -> int:
    """Points already paid out for *day* by the member's other closed intervals."""
    return session.scalar(
        select(func.coalesce(func.sum(VoiceSession.points_earned), 0)).where(
            VoiceSession.member_id == member_id,
            VoiceSession.date == day,
            VoiceSession.left_at.is_not(None),
            VoiceSession.id != exclude_id,
        )
    ) or 0


def _notification_for(
    accrual: AccrualResult, member_id: int, day: date, minutes: int, points: int
) -> Notification | None:
    if minutes <= 0 or not accrual.limit_reached:
        return None
    kind = (
        NotificationKind.LIMIT_ALREADY_REACHED
        if accrual.already_capped
        else NotificationKind.LIMIT_REACHED
    )
    return Notification(
        kind=kind,
        member_id=member_id,
        day=day,
        daily_minutes=accrual.daily_minutes,
        session_minutes=minutes,
        points=points,
    )


def _close_interval(
    session: Session,
    member: Member,
    interval: VoiceSession,
    left_at: datetime,
    *,
    apply_rounding: bool = True,
    recovery_note: str | None = None,
    credit: bool = True,
) -> ClosedInterval:
    """Close *interval* at *left_at* and apply every side effect.

    *member* must already be locked by the caller.
    """
    joined_at = as_utc(interval.joined_at)
    left_at = max(as_utc(left_at), joined_at)
    minutes = int((left_at - joined_at).total_seconds() // 60) if credit else 0
    day = interval.date

    daily = _daily_row(session, member.id, day)
    accrual = calculate_session_points(
        daily.total_minutes or 0, minutes, apply_rounding=apply_rounding
    )
    daily.total_minutes = (daily.total_minutes or 0) + minutes
    daily.session_count = (daily.session_count or 0) + 1
    daily.points_earned = daily_points_for_minutes(daily.total_minutes)
    daily.archived = False

    # Pieces credited unrounded must not push the day past its rounded worth
    credited = _credited_points(session, member.id, day, interval.id)
    points = min(accrual.points, max(daily.points_earned - credited, 0))

    interval.left_at = left_at
    interval.duration_minutes = minutes
    interval.points_earned = points
    if recovery_note:
        interval.recovery_note = recovery_note

    hours = minutes / 60
    member.monthly_hours = (member.monthly_hours or 0) + hours
    member.all_time_hours = (member.all_time_hours or 0) + hours
    member.monthly_points = (member.monthly_points or 0) + points
    member.all_time_points = (member.all_time_points or 0) + points

    # Live daily mirror tracks the most recent local day only
    if member.daily_date is None or day >= member.daily_date:
        same_day = member.daily_date == day
        member.daily_date = day
        member.daily_minutes = daily.total_minutes
        member.daily_points = (member.daily_points if same_day else 0) + points
        member.daily_limit_reached = daily.total_minutes >= DAILY_CAP_MINUTES

    add_house_points(session, member.house, points)

    streak = None
    if minutes >= MIN_STREAK_MINUTES:
        streak = record_qualifying_day(
            member, day, instant=joined_at, zone=member.timezone
        )

    session.flush()

    closed = ClosedInterval(
        interval_id=interval.id,
        member_id=member.id,
        channel_id=interval.channel_id,
        day=day,
        duration_minutes=minutes,
        points=points,
        daily_minutes=daily.total_minutes,
        limit_reached=accrual.limit_reached,
        house=member.house,
        streak=streak,
    )
    note = _notification_for(accrual, member.id, day, minutes, points)
    if note is not None:
        closed.notifications.append(note)

    logger.info(
        "Voice session closed: member=%s channel=%s date=%s %dm → %d pts "
        "(day %.2fh%s)",
        member.id, interval.channel_id, day, minutes, points,
        daily.total_minutes / 60, ", limit reached" if accrual.limit_reached else "",
    )
    return closed


def _split_locked(
    session: Session,
    member: Member,
    interval: VoiceSession,
    now: datetime,
) -> tuple[list[ClosedInterval], VoiceSession]:
    """Close every earlier-day piece of *interval* at its local midnight.

    Returns the closed pieces and the interval now attributed to today.
    """
    zone = member.timezone or REFERENCE_TIMEZONE
    today = today_in(zone, now)
    closed: list[ClosedInterval] = []

    while interval.date < today:
        next_day = interval.date + timedelta(days=1)
        boundary = max(start_of_day(zone, next_day), as_utc(interval.joined_at))
        boundary = min(boundary, now)
        piece = _close_interval(session, member, interval, boundary, apply_rounding=False)
        piece.notifications.append(Notification(
            kind=NotificationKind.MIDNIGHT_SPLIT,
            member_id=member.id,
            day=piece.day,
            daily_minutes=piece.daily_minutes,
            session_minutes=piece.duration_minutes,
            points=piece.points,
        ))
        closed.append(piece)

        successor = VoiceSession(
            member_id=member.id,
            channel_id=interval.channel_id,
            channel_name=interval.channel_name,
            joined_at=boundary,
            date=max(local_date(zone, boundary), next_day),
            split_from_id=interval.id,
        )
        session.add(successor)
        session.flush()
        logger.info(
            "Midnight split: member=%s channel=%s %s → %s at %s",
            member.id, interval.channel_id, interval.date, successor.date,
            boundary.isoformat(),
        )
        interval = successor

    return closed, interval


def _invalidate(cache: StatsCache | None, closed: list[ClosedInterval]) -> None:
    if cache is None:
        return
    for piece in closed:
        cache.invalidate_after_accrual(piece.member_id, piece.house)


# ---------------------------------------------------------------------------
# end
# ---------------------------------------------------------------------------
def end_session(
    engine: Engine,
    member_id: int,
    channel_id: int,
    *,
    now: datetime | None = None,
    cache: StatsCache | None = None,
) -> EndOutcome | None:
    """Close the member's open interval in *channel_id*.

    If the interval is dated before the member's local today, the earlier
    days are split off first (unrounded) and the remainder is closed as a
    natural session (55-minute rule).  Returns ``None`` when there is no
    open interval.
    """
    now = _now(now)
    with get_session(engine) as session:
        member = lock_member(session, member_id)
        if member is None:
            logger.debug("end_session: unknown member %s", member_id)
            return None
        interval = _open_interval(session, member_id, channel_id)
        if interval is None:
            logger.debug("end_session: no open interval for %s in %s", member_id, channel_id)
            return None

        splits, interval = _split_locked(session, member, interval, now)
        final = _close_interval(session, member, interval, now)
        outcome = EndOutcome(splits=splits, final=final)

    _invalidate(cache, [*outcome.splits, outcome.final])
    return outcome


# ---------------------------------------------------------------------------
# split at midnight
# ---------------------------------------------------------------------------
def split_at_midnight(
    engine: Engine,
    member_id: int,
    channel_id: int,
    *,
    now: datetime | None = None,
    cache: StatsCache | None = None,
) -> SplitOutcome | None:
    """Split an open interval whose date is no longer the member's local today.

    Returns ``None`` if there is no open interval or it is already dated today.
    """
    now = _now(now)
    with get_session(engine) as session:
        member = lock_member(session, member_id)
        if member is None:
            return None
        interval = _open_interval(session, member_id, channel_id)
        if interval is None:
            return None
        closed, current = _split_locked(session, member, interval, now)
        if not closed:
            return None
        outcome = SplitOutcome(closed=closed, current=_info(current, created=True))

    _invalidate(cache, outcome.closed)
    return outcome


def split_stale_sessions(
    engine: Engine,
    *,
    now: datetime | None = None,
    cache: StatsCache | None = None,
) -> list[SplitOutcome]:
    """Sweep every open interval and split the ones that crossed local midnight.

    One failing split is logged and does not stop the sweep.
    """
    now = _now(now)
    with Session(engine) as session:
        rows = session.execute(
            select(VoiceSession.member_id, VoiceSession.channel_id, VoiceSession.date,
                   Member.timezone)
            .join(Member, Member.id == VoiceSession.member_id)
            .where(VoiceSession.left_at.is_(None))
        ).all()

    outcomes: list[SplitOutcome] = []
    for member_id, channel_id, day, zone in rows:
        if day >= today_in(zone or REFERENCE_TIMEZONE, now):
            continue
        try:
            outcome = split_at_midnight(engine, member_id, channel_id, now=now, cache=cache)
        except Exception:
            logger.exception(
                "Midnight split failed",
                extra={"member_id": member_id, "channel_id": channel_id, "zone": zone},
            )
            continue
        if outcome is not None:
            outcomes.append(outcome)
    return outcomes


# ---------------------------------------------------------------------------
# Presence events (join / leave / move)
# ---------------------------------------------------------------------------
def apply_presence_event(
    engine: Engine,
    event: PresenceEvent,
    *,
    excluded_channel_ids: Collection[int] = frozenset(),
    cache: StatsCache | None = None,
) -> list[Notification]:
    """Turn one presence change into end/start calls.

    A move ends the interval in the old channel, then opens one in the new
    channel.  Returns the notifications raised by whatever was closed.
    """
    now = event.timestamp
    notes: list[Notification] = []
    if event.action in (PresenceAction.LEFT, PresenceAction.MOVED):
        outcome = end_session(
            engine, event.member_id, event.before_channel_id, now=now, cache=cache,
        )
        if outcome is not None:
            notes.extend(outcome.notifications)
    if event.action in (PresenceAction.JOINED, PresenceAction.MOVED):
        start_session(
            engine,
            event.member_id,
            event.after_channel_id,
            display_name=event.display_name,
            channel_name=event.after_channel_name,
            house=event.house,
            excluded_channel_ids=excluded_channel_ids,
            now=now,
        )
    return notes


# ---------------------------------------------------------------------------
# Crash recovery
# ---------------------------------------------------------------------------
def recover_open_sessions(
    engine: Engine,
    *,
    active: Collection[tuple[int, int]] = (),
    now: datetime | None = None,
    cache: StatsCache | None = None,
) -> RecoveryResult:
    """Close intervals left open by a crash or restart.

    * ``(member_id, channel_id)`` pairs in *active* are still in voice and
      stay open.
    * Intervals older than ``RECOVERY_STALE_HOURS`` are closed with no credit.
    * Younger intervals are credited up to ``RECOVERY_MAX_CREDIT_HOURS``.
    """
    now = _now(now)
    active = set(active)
    stale_before = now - timedelta(hours=RECOVERY_STALE_HOURS)
    max_credit = timedelta(hours=RECOVERY_MAX_CREDIT_HOURS)
    result = RecoveryResult()

    with Session(engine) as session:
        rows = session.execute(
            select(VoiceSession.id, VoiceSession.member_id, VoiceSession.channel_id)
            .where(VoiceSession.left_at.is_(None))
            .order_by(VoiceSession.joined_at)
        ).all()

    for interval_id, member_id, channel_id in rows:
        if (member_id, channel_id) in active:
            result.kept_open.append(interval_id)
            continue
        try:
            with get_session(engine) as session:
                member = lock_member(session, member_id)
                interval = session.get(VoiceSession, interval_id)
                if member is None or interval is None or interval.left_at is not None:
                    continue
                joined_at = as_utc(interval.joined_at)
                if joined_at < stale_before:
                    _close_interval(
                        session, member, interval, joined_at,
                        credit=False, recovery_note="Recovered: stale session, no credit",
                    )
                    result.discarded.append(interval_id)
                    continue
                estimated_end = min(now, joined_at + max_credit)
                closed = _close_interval(
                    session, member, interval, estimated_end,
                    recovery_note="Recovered from restart",
                )
                result.credited.append(closed)
        except Exception:
            logger.exception(
                "Session recovery failed",
                extra={"interval_id": interval_id, "member_id": member_id},
            )
            result.failed.append(interval_id)

    _invalidate(cache, result.credited)
    logger.info(
        "Session recovery: %d credited, %d discarded, %d still active, %d failed",
        len(result.credited), len(result.discarded), len(result.kept_open),
        len(result.failed),
    )
    return result


# ---------------------------------------------------------------------------
# Daily limit info
# ---------------------------------------------------------------------------
def get_daily_limit_info(
    engine: Engine,
    member_id: int,
    *,
    now: datetime | None = None,
) -> DailyLimitInfo:
    """How much of today's point allowance the member has left.

    ``remaining_hours`` is the smaller of the allowance left and the time
    until local midnight (when a fresh allowance starts).

    Raises
    ------
    MemberNotFoundError
        If the member has never been seen.
    """
    now = _now(now)
    with Session(engine) as session:
        member = session.get(Member, member_id)
        if member is None:
            raise MemberNotFoundError(member_id)
        zone = member.timezone or REFERENCE_TIMEZONE
        today = today_in(zone, now)
        daily = session.get(DailyVoiceStats, (member_id, today))
        minutes = daily.total_minutes if daily is not None else 0

    allowance = max(MAX_HOURS_PER_DAY - minutes / 60, 0.0)
    until_midnight = hours_until_midnight(zone, now)
    return DailyLimitInfo(
        member_id=member_id,
        timezone=zone,
        day=today,
        daily_minutes=minutes,
        allowance_hours_remaining=allowance,
        hours_until_midnight=until_midnight,
        remaining_hours=max(min(allowance, until_midnight), 0.0),
        limit_reached=minutes >= DAILY_CAP_MINUTES,
        can_earn_points=minutes < DAILY_CAP_MINUTES,
        limited_by="allowance" if allowance <= until_midnight else "time",
    )
