"""
hourglass.engine.timezones — Timezone Resolver (pure part)
===========================================================

**Why this file exists:**
Every daily boundary in Hourglass is a *member-local* boundary.  A member in
``Asia/Tokyo`` rolls over to a new day nine hours before a member in
``UTC`` does, and a member in ``America/New_York`` has one 23-hour and one
25-hour day each year.  This module owns all of that calendar arithmetic so
no service ever does ``datetime.now().date()`` on its own.

Every function takes an explicit ``now`` (an aware UTC instant) so callers
and tests control the clock.  Stored timestamps are UTC; SQLite hands them
back naive, which :func:`as_utc` normalises.

DST rule: when local midnight is skipped (spring forward) or repeated (fall
back), the *reset* instant for that day moves to ``DST_SAFE_RESET_HOUR``
local, so exactly one reset fires on a transition day.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError, available_timezones

from hourglass.constants import DST_SAFE_RESET_HOUR, REFERENCE_TIMEZONE

__all__ = [
    "InvalidTimezoneError",
    "ZoneLookup",
    "as_utc",
    "get_zone",
    "hours_until_midnight",
    "is_dst_transition_day",
    "is_valid_timezone",
    "local_date",
    "next_midnight",
    "now_in",
    "reset_instant",
    "search_timezones",
    "start_of_day",
    "supported_timezones",
    "today_in",
    "utc_now",
    "validate_timezone",
    "year_month",
]

# Names shipped in the tz database that are not real places
_EXCLUDED_NAMES = frozenset({"Factory", "localtime", "posixrules"})


class InvalidTimezoneError(ValueError):
    """Raised when a member (or config) names a zone we do not support."""

    def __init__(self, zone: object) -> None:
        self.zone = zone
        super().__init__(
            f"Invalid timezone {zone!r}. Use an IANA name such as "
            "'Europe/London' or 'America/New_York'."
        )


@dataclass(frozen=True, slots=True)
class ZoneLookup:
    """Outcome of resolving a stored zone string.

    ``ok`` is ``False`` when nothing usable was stored; ``reason`` then says
    why and ``zone`` is ``None``.  Callers choose their own fallback with
    :meth:`or_default`.
    """

    zone: str | None
    ok: bool
    reason: str | None = None

    def or_default(self, default: str = REFERENCE_TIMEZONE) -> str:
        return self.zone if self.ok and self.zone else default

    @classmethod
    def from_stored(cls, value: str | None) -> ZoneLookup:
        if not value:
            return cls(zone=None, ok=False, reason="unset")
        if not is_valid_timezone(value):
            return cls(zone=None, ok=False, reason=f"unsupported zone {value!r}")
        return cls(zone=value, ok=True)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def supported_timezones() -> frozenset[str]:
    """All IANA zone names the resolver accepts."""
    return frozenset(available_timezones() - _EXCLUDED_NAMES) | {REFERENCE_TIMEZONE}


def is_valid_timezone(zone: object) -> bool:
    return isinstance(zone, str) and zone in supported_timezones()


def validate_timezone(zone: object) -> str:
    """Return *zone* unchanged if supported, otherwise raise.

    Raises
    ------
    InvalidTimezoneError
        If *zone* is not a string naming a supported IANA zone.
    """
    if isinstance(zone, str):
        zone = zone.strip()
    if not is_valid_timezone(zone):
        raise InvalidTimezoneError(zone)
    return zone  # type: ignore[return-value]


@lru_cache(maxsize=512)
def get_zone(zone: str) -> ZoneInfo:
    try:
        return ZoneInfo(zone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezoneError(zone) from exc


def search_timezones(query: str, limit: int = 25) -> list[str]:
    """Case-insensitive substring match over supported zones (for autocomplete)."""
    needle = query.strip().lower().replace(" ", "_")
    matches = sorted(z for z in supported_timezones() if needle in z.lower())
    return matches[:limit]


# ---------------------------------------------------------------------------
# Clock helpers
# ---------------------------------------------------------------------------
def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to a naive datetime read back from the store."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def now_in(zone: str, now: datetime | None = None) -> datetime:
    """The current instant as a wall-clock datetime in *zone*."""
    instant = as_utc(now) if now is not None else utc_now()
    return instant.astimezone(get_zone(zone))


def local_date(zone: str, instant: datetime) -> date:
    """Calendar date of *instant* in *zone*."""
    return as_utc(instant).astimezone(get_zone(zone)).date()


def today_in(zone: str, now: datetime | None = None) -> date:
    return now_in(zone, now).date()


def year_month(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


# ---------------------------------------------------------------------------
# Day boundaries
# ---------------------------------------------------------------------------
def _wall_time_state(zone: str, naive: datetime) -> str:
    """Classify a wall-clock time: ``"normal"``, ``"skipped"`` or ``"repeated"``."""
    tz = get_zone(zone)
    first = naive.replace(tzinfo=tz, fold=0)
    second = naive.replace(tzinfo=tz, fold=1)
    if first.utcoffset() == second.utcoffset():
        return "normal"
    round_trip = first.astimezone(UTC).astimezone(tz).replace(tzinfo=None)
    return "skipped" if round_trip != naive else "repeated"


def start_of_day(zone: str, day: date) -> datetime:
    """First instant (UTC) of *day* in *zone*.

    A skipped midnight maps to the transition instant (the first wall time
    that exists on *day*); a repeated midnight maps to its first occurrence.
    """
    naive = datetime.combine(day, time.min)
    return naive.replace(tzinfo=get_zone(zone), fold=0).astimezone(UTC)


def next_midnight(zone: str, now: datetime | None = None) -> datetime:
    """UTC instant at which the member's next local day begins."""
    return start_of_day(zone, today_in(zone, now) + timedelta(days=1))


def hours_until_midnight(zone: str, now: datetime | None = None) -> float:
    instant = as_utc(now) if now is not None else utc_now()
    return max((next_midnight(zone, instant) - instant).total_seconds() / 3600, 0.0)


def is_dst_transition_day(zone: str, day: date) -> bool:
    """True when *day* is not exactly 24 hours long in *zone*."""
    length = start_of_day(zone, day + timedelta(days=1)) - start_of_day(zone, day)
    return length != timedelta(hours=24)


def reset_instant(zone: str, day: date) -> datetime:
    """UTC instant at which the daily reset for *day* is due.

    Normally local midnight.  If midnight is skipped or repeated on *day*,
    the reset moves to ``DST_SAFE_RESET_HOUR`` local.
    """
    midnight = datetime.combine(day, time.min)
    if _wall_time_state(zone, midnight) == "normal":
        return start_of_day(zone, day)
    safe = datetime.combine(day, time(hour=DST_SAFE_RESET_HOUR))
    return safe.replace(tzinfo=get_zone(zone), fold=0).astimezone(UTC)
