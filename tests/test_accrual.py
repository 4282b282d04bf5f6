"""
tests/test_accrual.py — Points Accrual Calculator
==================================================
Pure-function tests: tier integration, the 55-minute rule on daily totals,
and the 15-hour cap with proportional credit.
"""

from __future__ import annotations

import pytest

from hourglass.engine.accrual import (
    DAILY_CAP_MINUTES,
    calculate_session_points,
    daily_points_for_minutes,
    points_for_hours,
    round_hours,
    round_minutes,
    tier_points,
)


class TestRounding:
    @pytest.mark.parametrize(
        ("minutes", "expected"),
        [(0, 0), (54, 0), (55, 1), (70, 1), (114, 1), (115, 2), (119, 2), (120, 2)],
    )
    def test_fifty_five_minute_rule(self, minutes, expected):
        assert round_minutes(minutes) == expected

    def test_round_hours_survives_float_noise(self):
        assert round_hours(115 / 60) == 2
        assert round_hours(70 / 60) == 1
        assert round_hours(14.5) == 14


class TestTierFunction:
    def test_first_hour_rate(self):
        assert tier_points(0.5) == pytest.approx(2.5)
        assert tier_points(1) == 5

    def test_rest_hours_rate(self):
        assert tier_points(2) == 7
        assert tier_points(15) == 33

    def test_monotonic(self):
        values = [tier_points(h / 4) for h in range(0, 80)]
        assert values == sorted(values)

    def test_points_for_hours_is_a_difference(self):
        assert points_for_hours(0, 1) == 5
        assert points_for_hours(1, 1) == 2
        assert points_for_hours(0.5, 1) == pytest.approx(2.5 + 1.0)
        assert points_for_hours(3, 0) == 0


class TestSessionPoints:
    def test_seventy_then_seventy_minutes(self):
        first = calculate_session_points(0, 70)
        assert first.points == 5
        assert first.daily_minutes == 70

        second = calculate_session_points(70, 70)
        assert second.points == 2
        assert second.daily_minutes == 140

    def test_order_of_sessions_does_not_change_the_day(self):
        sessions = [25, 40, 95, 10, 200]
        total = 0
        earned = 0
        for minutes in sessions:
            earned += calculate_session_points(total, minutes).points
            total += minutes
        assert earned == daily_points_for_minutes(total)

        total = 0
        earned_reversed = 0
        for minutes in reversed(sessions):
            earned_reversed += calculate_session_points(total, minutes).points
            total += minutes
        assert earned_reversed == earned

    def test_short_first_session_can_earn_nothing_yet(self):
        # 30 minutes rounds down to zero hours
        assert calculate_session_points(0, 30).points == 0
        # ...and the next 30 minutes completes the hour
        assert calculate_session_points(30, 30).points == 5

    def test_zero_minutes(self):
        result = calculate_session_points(120, 0)
        assert result.points == 0
        assert not result.limit_reached


class TestDailyCap:
    def test_session_straddling_the_cap_gets_proportional_credit(self):
        # 14.5h already, then a 60 minute session: half of it is inside the cap
        result = calculate_session_points(870, 60)
        assert result.session_points_uncapped == 2
        assert result.points == 1
        assert result.limit_reached
        assert not result.already_capped
        assert result.daily_minutes == 930

    def test_already_capped_earns_nothing_but_records_minutes(self):
        result = calculate_session_points(DAILY_CAP_MINUTES, 45)
        assert result.points == 0
        assert result.already_capped
        assert result.limit_reached
        assert result.daily_minutes == DAILY_CAP_MINUTES + 45

    def test_landing_exactly_on_the_cap(self):
        result = calculate_session_points(DAILY_CAP_MINUTES - 60, 60)
        assert result.points == 2
        assert result.limit_reached

    def test_daily_points_never_exceed_cap_value(self):
        assert daily_points_for_minutes(DAILY_CAP_MINUTES) == 33
        assert daily_points_for_minutes(DAILY_CAP_MINUTES * 2) == 33


class TestSplitMode:
    def test_unrounded_points_are_floored(self):
        # 30 minutes unrounded is 2.5 points → floor 2
        assert calculate_session_points(0, 30, apply_rounding=False).points == 2

    def test_unrounded_increment_uses_cumulative_floor(self):
        # 30 → 60 minutes: floor(5) - floor(2.5) = 3
        assert calculate_session_points(30, 30, apply_rounding=False).points == 3
