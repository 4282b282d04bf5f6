"""
tests/test_timezones.py — Timezone Resolver
============================================
Validation, local calendar arithmetic, DST-safe reset instants, and the
cached member → zone service.
"""

from __future__ import annotations

from datetime import date

import pytest
from conftest import utc
from sqlalchemy.orm import Session

from hourglass.database.models import Member
from hourglass.engine.cache import TTLCache
from hourglass.engine.timezones import (
    InvalidTimezoneError,
    ZoneLookup,
    hours_until_midnight,
    is_dst_transition_day,
    is_valid_timezone,
    local_date,
    next_midnight,
    reset_instant,
    search_timezones,
    start_of_day,
    validate_timezone,
    year_month,
)
from hourglass.services.timezone_service import (
    TimezoneService,
    get_user_timezone,
    set_user_timezone,
)


class TestValidation:
    @pytest.mark.parametrize("zone", ["UTC", "Europe/London", "Asia/Kolkata", "America/New_York"])
    def test_accepts_iana_names(self, zone):
        assert is_valid_timezone(zone)
        assert validate_timezone(zone) == zone

    @pytest.mark.parametrize("zone", ["Mars/Olympus", "", "EST5EDT-ish", None, 42, "Factory"])
    def test_rejects_everything_else(self, zone):
        assert not is_valid_timezone(zone)
        with pytest.raises(InvalidTimezoneError):
            validate_timezone(zone)

    def test_validate_strips_whitespace(self):
        assert validate_timezone("  Asia/Tokyo ") == "Asia/Tokyo"

    def test_lookup_reports_reason(self):
        assert ZoneLookup.from_stored(None).reason == "unset"
        bad = ZoneLookup.from_stored("Nowhere/Special")
        assert not bad.ok
        assert bad.or_default() == "UTC"
        assert ZoneLookup.from_stored("Asia/Tokyo").or_default() == "Asia/Tokyo"

    def test_search_is_case_insensitive(self):
        matches = search_timezones("new york")
        assert "America/New_York" in matches
        assert len(search_timezones("a", limit=5)) == 5


class TestCalendar:
    def test_same_instant_different_dates(self):
        instant = utc(2026, 3, 10, 23, 30)
        assert local_date("UTC", instant) == date(2026, 3, 10)
        assert local_date("Asia/Tokyo", instant) == date(2026, 3, 11)
        assert local_date("America/Los_Angeles", instant) == date(2026, 3, 10)

    def test_naive_values_are_read_as_utc(self):
        naive = utc(2026, 3, 10, 23, 30).replace(tzinfo=None)
        assert local_date("Asia/Tokyo", naive) == date(2026, 3, 11)

    def test_start_of_day(self):
        assert start_of_day("Asia/Tokyo", date(2026, 3, 11)) == utc(2026, 3, 10, 15, 0)
        assert start_of_day("America/New_York", date(2026, 1, 15)) == utc(2026, 1, 15, 5, 0)

    def test_next_midnight_and_hours_left(self):
        now = utc(2026, 1, 15, 22, 0)
        assert next_midnight("UTC", now) == utc(2026, 1, 16, 0, 0)
        assert hours_until_midnight("UTC", now) == pytest.approx(2.0)
        assert hours_until_midnight("America/New_York", now) == pytest.approx(7.0)

    def test_year_month(self):
        assert year_month(date(2026, 3, 1)) == "2026-03"


class TestDaylightSaving:
    def test_spring_forward_day_is_short(self):
        assert is_dst_transition_day("America/New_York", date(2026, 3, 8))
        assert not is_dst_transition_day("America/New_York", date(2026, 3, 9))
        assert not is_dst_transition_day("UTC", date(2026, 3, 8))

    def test_reset_instant_is_midnight_when_midnight_exists(self):
        # New York changes at 02:00, so its midnight is untouched
        assert reset_instant("America/New_York", date(2026, 3, 8)) == utc(2026, 3, 8, 5, 0)
        assert reset_instant("UTC", date(2026, 3, 8)) == utc(2026, 3, 8, 0, 0)

    def test_reset_moves_off_a_skipped_midnight(self):
        # Havana springs forward at local midnight: 00:00 → 01:00 (UTC-5 → UTC-4)
        day = date(2026, 3, 8)
        assert reset_instant("America/Havana", day) == utc(2026, 3, 8, 7, 0)
        assert reset_instant("America/Havana", day) > start_of_day("America/Havana", day)


class TestTimezoneService:
    def _add_member(self, engine, member_id, zone):
        with Session(engine) as session:
            session.add(Member(id=member_id, display_name=f"m{member_id}", timezone=zone))
            session.commit()

    def test_unknown_member_resolves_to_reference(self, db_engine):
        service = TimezoneService(db_engine)
        lookup = service.lookup(404)
        assert not lookup.ok
        assert lookup.reason == "unknown member"
        assert service.resolve(404) == "UTC"
        # Unknown members are not cached
        assert len(service.cache) == 0

    def test_stored_zone_is_cached(self, db_engine):
        self._add_member(db_engine, 1, "Asia/Tokyo")
        service = TimezoneService(db_engine)
        assert service.resolve(1) == "Asia/Tokyo"
        assert service.cache.misses == 1

        # Change underneath the cache; the cached value wins until invalidated
        with Session(db_engine) as session:
            session.get(Member, 1).timezone = "Europe/Paris"
            session.commit()
        assert service.resolve(1) == "Asia/Tokyo"
        service.invalidate(1)
        assert service.resolve(1) == "Europe/Paris"

    def test_unusable_stored_zone_falls_back(self, db_engine):
        self._add_member(db_engine, 2, "Atlantis/Lost")
        service = TimezoneService(db_engine)
        assert service.lookup(2).reason == "unsupported zone 'Atlantis/Lost'"
        assert service.resolve(2) == "UTC"

    def test_empty_injected_cache_is_used(self, db_engine):
        injected = TTLCache(max_size=10, ttl_seconds=60)
        assert len(injected) == 0
        service = TimezoneService(db_engine, injected)
        assert service.cache is injected

        self._add_member(db_engine, 4, "Asia/Tokyo")
        service.resolve(4)
        assert injected.get(4).zone == "Asia/Tokyo"

    def test_cache_entries_expire(self, db_engine):
        clock = [0.0]
        self._add_member(db_engine, 3, "Asia/Tokyo")
        service = TimezoneService(db_engine, TTLCache(max_size=10, ttl_seconds=60, clock=lambda: clock[0]))
        service.resolve(3)
        with Session(db_engine) as session:
            session.get(Member, 3).timezone = "Europe/Oslo"
            session.commit()
        clock[0] = 61.0
        assert service.resolve(3) == "Europe/Oslo"

    def test_set_creates_member_and_records_previous_zone(self, db_engine):
        service = TimezoneService(db_engine)
        service.resolve(5)
        change = service.set(5, "Asia/Tokyo", display_name="Five", now=utc(2026, 3, 10, 12, 0))
        assert change.old_timezone == "UTC"
        assert change.new_timezone == "Asia/Tokyo"
        assert change.streak_preserved
        assert service.resolve(5) == "Asia/Tokyo"

        with Session(db_engine) as session:
            member = session.get(Member, 5)
            assert member.display_name == "Five"
            assert member.previous_timezone == "UTC"
            assert member.timezone_set_at is not None

    def test_set_rejects_invalid_zone_without_writing(self, db_engine):
        self._add_member(db_engine, 6, "Europe/London")
        with pytest.raises(InvalidTimezoneError):
            set_user_timezone(db_engine, 6, "Not/AZone")
        assert get_user_timezone(db_engine, 6) == "Europe/London"

    def test_streak_at_risk_when_last_day_is_stale_in_both_zones(self, db_engine):
        with Session(db_engine) as session:
            session.add(Member(
                id=7, display_name="m7", timezone="UTC",
                current_streak=3, longest_streak=3, last_streak_date=date(2026, 3, 1),
            ))
            session.commit()
        change = set_user_timezone(db_engine, 7, "Asia/Tokyo", now=utc(2026, 3, 10, 12, 0))
        assert not change.streak_preserved
