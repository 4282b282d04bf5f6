"""
hourglass.services.timezone_service — Timezone Resolver (DB-backed)
====================================================================

Maps a member id to the IANA zone stored on their row, through a bounded,
time-expiring :class:`~hourglass.engine.cache.TTLCache`.

* :meth:`TimezoneService.lookup` returns a :class:`ZoneLookup` so the caller
  sees *why* a zone is missing.
* :meth:`TimezoneService.resolve` never fails: unknown members, unset zones
  and unsupported stored values all resolve to the reference zone.
* Setting a zone validates first and raises
  :class:`~hourglass.engine.timezones.InvalidTimezoneError`; nothing is ever
  silently coerced on write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from hourglass.constants import REFERENCE_TIMEZONE
from hourglass.database.engine import get_session
from hourglass.database.models import Member
from hourglass.engine.cache import TTLCache
from hourglass.engine.timezones import (
    ZoneLookup,
    as_utc,
    today_in,
    utc_now,
    validate_timezone,
)
from hourglass.services.member_service import get_or_create_member

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

TIMEZONE_CACHE_TTL_SECONDS = 3600
TIMEZONE_CACHE_SIZE = 10_000


@dataclass(frozen=True, slots=True)
class TimezoneChange:
    member_id: int
    old_timezone: str
    new_timezone: str
    changed_at: datetime
    streak_preserved: bool


class TimezoneService:
    """Cached member → zone resolver.

    Usage::

        tz = TimezoneService(engine)
        tz.resolve(123)                     # "UTC" if never set
        tz.set(123, "Asia/Tokyo")
        tz.lookup(999)                      # ZoneLookup(zone=None, ok=False, reason="unknown member")
    """

    def __init__(self, engine: Engine, cache: TTLCache | None = None) -> None:
        self._engine = engine
        self._cache = cache if cache is not None else TTLCache(
            max_size=TIMEZONE_CACHE_SIZE, ttl_seconds=TIMEZONE_CACHE_TTL_SECONDS
        )

    @property
    def cache(self) -> TTLCache:
        return self._cache

    def lookup(self, member_id: int) -> ZoneLookup:
        cached = self._cache.get(member_id)
        if cached is not None:
            return cached
        with Session(self._engine) as session:
            stored = session.scalar(select(Member.timezone).where(Member.id == member_id))
        if stored is None:
            # Not cached: the member may be created a moment from now
            return ZoneLookup(zone=None, ok=False, reason="unknown member")
        result = ZoneLookup.from_stored(stored)
        if not result.ok:
            logger.warning("Member %s has unusable timezone (%s)", member_id, result.reason)
        self._cache.set(member_id, result)
        return result

    def resolve(self, member_id: int) -> str:
        return self.lookup(member_id).or_default(REFERENCE_TIMEZONE)

    def set(
        self,
        member_id: int,
        zone: str,
        *,
        display_name: str | None = None,
        now: datetime | None = None,
    ) -> TimezoneChange:
        change = set_user_timezone(
            self._engine, member_id, zone, display_name=display_name, now=now
        )
        self.invalidate(member_id)
        return change

    def invalidate(self, member_id: int) -> None:
        self._cache.delete(member_id)

    def clear(self) -> None:
        self._cache.clear()


# ---------------------------------------------------------------------------
# Module-level operations (API / admin surface)
# ---------------------------------------------------------------------------
def get_user_timezone(engine: Engine, member_id: int) -> str:
    """Stored zone for *member_id*, or the reference zone."""
    with Session(engine) as session:
        stored = session.scalar(select(Member.timezone).where(Member.id == member_id))
    return ZoneLookup.from_stored(stored).or_default(REFERENCE_TIMEZONE)


def set_user_timezone(
    engine: Engine,
    member_id: int,
    zone: str,
    *,
    display_name: str | None = None,
    now: datetime | None = None,
) -> TimezoneChange:
    """Validate and store *zone* for *member_id* (creating the member if needed).

    The previous zone and the change time are kept so the streak tracker can
    evaluate the day of the change in either zone.

    Raises
    ------
    InvalidTimezoneError
        If *zone* is not a supported IANA zone.  Nothing is written.
    """
    zone = validate_timezone(zone)
    now = as_utc(now) if now is not None else utc_now()

    with get_session(engine) as session:
        member = get_or_create_member(session, member_id, display_name)
        old = member.timezone or REFERENCE_TIMEZONE
        preserved = _streak_survives_change(member, old, zone, now)
        if old != zone:
            member.previous_timezone = old
            member.timezone = zone
            member.timezone_set_at = now

    logger.info(
        "Timezone for %s: %s → %s (streak %s)",
        member_id, old, zone, "preserved" if preserved else "at risk",
    )
    return TimezoneChange(
        member_id=member_id,
        old_timezone=old,
        new_timezone=zone,
        changed_at=now,
        streak_preserved=preserved,
    )


def _streak_survives_change(member: Member, old: str, new: str, now: datetime) -> bool:
    """True when the last qualifying day is still today/yesterday in either zone."""
    last = member.last_streak_date
    if last is None or member.current_streak == 0:
        return True
    live_days = set()
    for zone in (old, new):
        today = today_in(zone, now)
        live_days.update({today, today - timedelta(days=1)})
    return last in live_days
