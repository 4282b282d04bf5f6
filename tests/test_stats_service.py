"""
tests/test_stats_service.py — Stats & Leaderboards
===================================================
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import utc
from sqlalchemy.orm import Session

from hourglass.database.models import Member, MonthlyVoiceSummary
from hourglass.engine.cache import StatsCache, leaderboard_key
from hourglass.services.member_service import MemberNotFoundError
from hourglass.services.session_service import end_session, start_session
from hourglass.services.stats_service import (
    get_house_leaderboard,
    get_leaderboard,
    get_member_stats,
)

T0 = utc(2026, 3, 10, 10, 0)


@pytest.fixture
def history(db_engine):
    for member_id, name, house, hours in (
        (1, "Ada", "Ravenclaw", 3),
        (2, "Brook", "Hufflepuff", 1),
        (3, "Cy", "Ravenclaw", 2),
    ):
        start_session(db_engine, member_id, 10, display_name=name, house=house, now=T0)
        end_session(db_engine, member_id, 10, now=T0 + timedelta(hours=hours))
    with Session(db_engine) as session:
        session.add(Member(id=4, display_name="Idle"))
        session.add(MonthlyVoiceSummary(
            member_id=1, year_month="2026-02", total_hours=20.0, total_points=44,
        ))
        session.commit()
    return db_engine


class TestMemberStats:
    def test_stats_for_member(self, history):
        stats = get_member_stats(history, 3, now=T0 + timedelta(hours=3))
        assert stats["display_name"] == "Cy"
        assert stats["monthly_points"] == 7
        assert stats["monthly_rank"] == 2
        assert stats["today"] == {"date": "2026-03-10", "minutes": 120, "points": 7, "sessions": 1}
        assert stats["current_streak"] == 1

    def test_history_lists_archived_months(self, history):
        stats = get_member_stats(history, 1, now=T0)
        assert stats["history"] == [{"month": "2026-02", "hours": 20.0, "points": 44}]

    def test_unknown_member(self, history):
        with pytest.raises(MemberNotFoundError):
            get_member_stats(history, 404)


class TestLeaderboards:
    def test_members_by_points_skip_idle(self, history):
        board = get_leaderboard(history, "monthly")
        assert [row["display_name"] for row in board] == ["Ada", "Cy", "Brook"]
        assert [row["points"] for row in board] == [9, 7, 5]
        assert board[0]["hours"] == 3.0

    def test_cached_board_is_sliced(self, history):
        cache = StatsCache()
        assert len(get_leaderboard(history, "alltime", limit=2, cache=cache)) == 2
        assert len(cache.get(leaderboard_key("alltime"))) == 3
        assert len(get_leaderboard(history, "alltime", limit=10, cache=cache)) == 3

    def test_unknown_period(self, history):
        with pytest.raises(ValueError):
            get_leaderboard(history, "weekly")

    def test_house_totals(self, history):
        board = get_house_leaderboard(history, "monthly")
        assert board[0] == {"rank": 1, "name": "Ravenclaw", "points": 16, "member_count": 2}
        assert board[1]["name"] == "Hufflepuff"
        assert board[1]["points"] == 5
