"""
tests/test_session_service.py — Session Lifecycle Manager
==========================================================
Integration tests against in-memory SQLite: start/end, accrual side effects,
midnight splits, presence events, crash recovery and the daily-limit view.
"""

from __future__ import annotations

from datetime import date, timedelta

import pytest
from conftest import utc
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from hourglass.database.models import DailyVoiceStats, House, Member, VoiceSession
from hourglass.engine.cache import StatsCache, user_stats_key
from hourglass.engine.events import NotificationKind, PresenceEvent
from hourglass.engine.streak import StreakOutcome
from hourglass.services.member_service import MemberNotFoundError
from hourglass.services.session_service import (
    apply_presence_event,
    end_session,
    get_daily_limit_info,
    recover_open_sessions,
    split_stale_sessions,
    start_session,
)

T0 = utc(2026, 3, 10, 10, 0)


def _open_channels(engine, member_id):
    with Session(engine) as session:
        return sorted(session.scalars(
            select(VoiceSession.channel_id).where(
                VoiceSession.member_id == member_id,
                VoiceSession.left_at.is_(None),
            )
        ).all())


def _session_for(engine, member_id, channel_id, start, end, **kw):
    start_session(engine, member_id, channel_id, now=start, **kw)
    return end_session(engine, member_id, channel_id, now=end)


class TestStartSession:
    def test_start_creates_member_and_interval(self, db_engine):
        info = start_session(db_engine, 1, 10, display_name="Ada", now=T0)
        assert info.created
        assert info.day == date(2026, 3, 10)

        with Session(db_engine) as session:
            member = session.get(Member, 1)
            assert member.display_name == "Ada"
            assert member.timezone == "UTC"

    def test_second_start_is_a_no_op(self, db_engine):
        first = start_session(db_engine, 1, 10, now=T0)
        second = start_session(db_engine, 1, 10, now=T0 + timedelta(minutes=5))
        assert not second.created
        assert second.id == first.id
        assert second.joined_at == T0
        assert _open_channels(db_engine, 1) == [10]

    def test_excluded_channel_is_ignored(self, db_engine):
        assert start_session(db_engine, 1, 99, excluded_channel_ids={99}, now=T0) is None
        assert _open_channels(db_engine, 1) == []

    def test_interval_is_dated_in_member_zone(self, db_engine):
        with Session(db_engine) as session:
            session.add(Member(id=2, display_name="Kenji", timezone="Asia/Tokyo"))
            session.commit()
        info = start_session(db_engine, 2, 10, now=utc(2026, 3, 10, 20, 0))
        assert info.day == date(2026, 3, 11)


class TestEndSession:
    def test_seventy_then_seventy_minutes(self, db_engine):
        first = _session_for(db_engine, 1, 10, T0, T0 + timedelta(minutes=70))
        second = _session_for(
            db_engine, 1, 10, T0 + timedelta(hours=2), T0 + timedelta(hours=2, minutes=70)
        )
        assert first.final.points == 5
        assert second.final.points == 2

        with Session(db_engine) as session:
            member = session.get(Member, 1)
            assert member.monthly_points == 7
            assert member.all_time_points == 7
            assert member.daily_minutes == 140
            assert member.monthly_hours == pytest.approx(140 / 60)
            daily = session.get(DailyVoiceStats, (1, date(2026, 3, 10)))
            assert daily.total_minutes == 140
            assert daily.session_count == 2
            assert daily.points_earned == 7

    def test_end_without_open_interval(self, db_engine):
        assert end_session(db_engine, 1, 10, now=T0) is None
        start_session(db_engine, 1, 10, now=T0)
        assert end_session(db_engine, 1, 20, now=T0) is None

    def test_points_flow_to_house(self, db_engine):
        _session_for(db_engine, 1, 10, T0, T0 + timedelta(hours=2), house="Ravenclaw")
        with Session(db_engine) as session:
            house = session.get(House, "Ravenclaw")
            assert house.monthly_points == 7
            assert house.all_time_points == 7

    def test_qualifying_session_starts_streak(self, db_engine):
        outcome = _session_for(db_engine, 1, 10, T0, T0 + timedelta(minutes=20))
        assert outcome.final.streak.outcome is StreakOutcome.STARTED

    def test_short_session_does_not_touch_streak(self, db_engine):
        outcome = _session_for(db_engine, 1, 10, T0, T0 + timedelta(minutes=10))
        assert outcome.final.streak is None
        with Session(db_engine) as session:
            assert session.get(Member, 1).current_streak == 0

    def test_cap_notifications(self, db_engine):
        day_start = utc(2026, 3, 10, 0, 0)
        capped = _session_for(db_engine, 1, 10, day_start, day_start + timedelta(hours=15, minutes=30))
        # 33 uncapped points, of which 900/930 falls under the cap
        assert capped.final.points == 31
        assert [n.kind for n in capped.notifications] == [NotificationKind.LIMIT_REACHED]

        after = _session_for(
            db_engine, 1, 10, day_start + timedelta(hours=16), day_start + timedelta(hours=17)
        )
        assert after.final.points == 0
        assert [n.kind for n in after.notifications] == [NotificationKind.LIMIT_ALREADY_REACHED]

    def test_stats_cache_is_invalidated(self, db_engine):
        cache = StatsCache()
        cache.set(user_stats_key(1), {"stale": True})
        cache.set("leaderboard:monthly", [])
        start_session(db_engine, 1, 10, now=T0)
        end_session(db_engine, 1, 10, now=T0 + timedelta(hours=1), cache=cache)
        assert user_stats_key(1) not in cache
        assert "leaderboard:monthly" not in cache


class TestMidnightSplit:
    def test_end_after_midnight_splits_the_interval(self, db_engine):
        outcome = _session_for(
            db_engine, 1, 10, utc(2026, 3, 10, 23, 0), utc(2026, 3, 11, 1, 30)
        )
        assert len(outcome.splits) == 1
        piece = outcome.splits[0]
        assert piece.day == date(2026, 3, 10)
        assert piece.duration_minutes == 60
        assert piece.points == 5
        assert outcome.final.day == date(2026, 3, 11)
        assert outcome.final.duration_minutes == 90
        assert outcome.final.points == 5
        assert outcome.total_minutes == 150
        assert NotificationKind.MIDNIGHT_SPLIT in [n.kind for n in outcome.notifications]

        with Session(db_engine) as session:
            assert session.get(DailyVoiceStats, (1, date(2026, 3, 10))).total_minutes == 60
            assert session.get(DailyVoiceStats, (1, date(2026, 3, 11))).total_minutes == 90
            member = session.get(Member, 1)
            assert member.current_streak == 2
            assert member.daily_date == date(2026, 3, 11)
            successor = session.scalar(
                select(VoiceSession).where(VoiceSession.split_from_id.is_not(None))
            )
            assert successor.date == date(2026, 3, 11)

    def test_sweep_splits_open_intervals_only_once(self, db_engine):
        start_session(db_engine, 1, 10, now=utc(2026, 3, 10, 23, 0))
        start_session(db_engine, 2, 10, now=utc(2026, 3, 11, 0, 10))

        outcomes = split_stale_sessions(db_engine, now=utc(2026, 3, 11, 0, 20))
        assert len(outcomes) == 1
        assert outcomes[0].current.day == date(2026, 3, 11)
        assert outcomes[0].closed[0].duration_minutes == 60
        assert split_stale_sessions(db_engine, now=utc(2026, 3, 11, 0, 30)) == []

        final = end_session(db_engine, 1, 10, now=utc(2026, 3, 11, 1, 0))
        assert final.splits == []
        assert final.final.duration_minutes == 60

    def test_split_piece_never_exceeds_the_rounded_day(self, db_engine):
        # 115 min rounds to 2h (7 pts); 5 more minutes cannot earn an 8th
        _session_for(db_engine, 1, 10, T0, T0 + timedelta(minutes=115))
        outcome = _session_for(
            db_engine, 1, 10, utc(2026, 3, 10, 23, 55), utc(2026, 3, 11, 0, 30)
        )
        assert outcome.splits[0].duration_minutes == 5
        assert outcome.splits[0].points == 0

        with Session(db_engine) as session:
            daily = session.get(DailyVoiceStats, (1, date(2026, 3, 10)))
            assert daily.total_minutes == 120
            assert daily.points_earned == 7
            paid = session.scalar(
                select(func.sum(VoiceSession.points_earned)).where(
                    VoiceSession.member_id == 1,
                    VoiceSession.date == date(2026, 3, 10),
                )
            )
            assert paid == 7
            assert session.get(Member, 1).monthly_points == 7 + outcome.final.points

    def test_multi_day_interval_splits_per_day(self, db_engine):
        outcome = _session_for(
            db_engine, 1, 10, utc(2026, 3, 10, 22, 0), utc(2026, 3, 12, 1, 0)
        )
        assert [p.day for p in outcome.splits] == [date(2026, 3, 10), date(2026, 3, 11)]
        assert [p.duration_minutes for p in outcome.splits] == [120, 24 * 60]
        assert outcome.total_minutes == 27 * 60


class TestPresenceEvents:
    def test_join_move_leave(self, db_engine):
        join = PresenceEvent.from_channels(1, "Ada", None, 10, timestamp=T0)
        assert apply_presence_event(db_engine, join) == []
        assert _open_channels(db_engine, 1) == [10]

        move = PresenceEvent.from_channels(
            1, "Ada", 10, 20, after_channel_name="Library", timestamp=T0 + timedelta(minutes=70)
        )
        apply_presence_event(db_engine, move)
        assert _open_channels(db_engine, 1) == [20]

        leave = PresenceEvent.from_channels(1, "Ada", 20, None, timestamp=T0 + timedelta(minutes=140))
        apply_presence_event(db_engine, leave)
        assert _open_channels(db_engine, 1) == []

        with Session(db_engine) as session:
            assert session.get(Member, 1).monthly_points == 7

    def test_move_into_excluded_channel_only_closes(self, db_engine):
        apply_presence_event(db_engine, PresenceEvent.from_channels(1, "Ada", None, 10, timestamp=T0))
        move = PresenceEvent.from_channels(1, "Ada", 10, 99, timestamp=T0 + timedelta(hours=1))
        apply_presence_event(db_engine, move, excluded_channel_ids={99})
        assert _open_channels(db_engine, 1) == []

    def test_no_channel_change_is_not_an_event(self):
        assert PresenceEvent.from_channels(1, "Ada", 10, 10) is None


class TestRecovery:
    NOW = utc(2026, 3, 12, 18, 0)

    def test_recovery_classifies_open_intervals(self, db_engine):
        stale = start_session(db_engine, 1, 10, now=self.NOW - timedelta(hours=30))
        recent = start_session(db_engine, 2, 10, now=self.NOW - timedelta(hours=5))
        active = start_session(db_engine, 3, 10, now=self.NOW - timedelta(hours=1))

        result = recover_open_sessions(db_engine, active={(3, 10)}, now=self.NOW)

        assert result.discarded == [stale.id]
        assert [c.interval_id for c in result.credited] == [recent.id]
        assert result.credited[0].duration_minutes == 180
        assert result.credited[0].points == 9
        assert result.kept_open == [active.id]
        assert result.failed == []

        with Session(db_engine) as session:
            assert session.get(VoiceSession, stale.id).duration_minutes == 0
            assert session.get(VoiceSession, recent.id).recovery_note == "Recovered from restart"
        assert _open_channels(db_engine, 3) == [10]

    def test_recovery_is_idempotent(self, db_engine):
        start_session(db_engine, 2, 10, now=self.NOW - timedelta(hours=2))
        first = recover_open_sessions(db_engine, now=self.NOW)
        second = recover_open_sessions(db_engine, now=self.NOW)
        assert len(first.credited) == 1
        assert second.credited == []
        with Session(db_engine) as session:
            assert session.get(Member, 2).all_time_points == 7


class TestDailyLimitInfo:
    def test_remaining_limited_by_time(self, db_engine):
        _session_for(db_engine, 1, 10, utc(2026, 3, 10, 8, 0), utc(2026, 3, 10, 18, 0))
        info = get_daily_limit_info(db_engine, 1, now=utc(2026, 3, 10, 20, 0))
        assert info.daily_hours == pytest.approx(10.0)
        assert info.allowance_hours_remaining == pytest.approx(5.0)
        assert info.hours_until_midnight == pytest.approx(4.0)
        assert info.remaining_hours == pytest.approx(4.0)
        assert info.limited_by == "time"
        assert info.can_earn_points
        assert info.to_dict()["date"] == "2026-03-10"

    def test_remaining_limited_by_allowance(self, db_engine):
        _session_for(db_engine, 1, 10, utc(2026, 3, 10, 0, 0), utc(2026, 3, 10, 14, 0))
        info = get_daily_limit_info(db_engine, 1, now=utc(2026, 3, 10, 14, 0))
        assert info.remaining_hours == pytest.approx(1.0)
        assert info.limited_by == "allowance"

    def test_new_local_day_has_full_allowance(self, db_engine):
        _session_for(db_engine, 1, 10, utc(2026, 3, 10, 0, 0), utc(2026, 3, 10, 16, 0))
        assert get_daily_limit_info(db_engine, 1, now=utc(2026, 3, 10, 17, 0)).limit_reached
        info = get_daily_limit_info(db_engine, 1, now=utc(2026, 3, 11, 1, 0))
        assert info.daily_minutes == 0
        assert not info.limit_reached

    def test_unknown_member(self, db_engine):
        with pytest.raises(MemberNotFoundError):
            get_daily_limit_info(db_engine, 404, now=T0)
