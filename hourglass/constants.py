"""
hourglass.constants — Shared Constants
=======================================

Single source of truth for the accrual policy and house presentation.
Import from here instead of duplicating in cogs, services, and dashboard.

The accrual policy is fixed: one tier table, one rounding rule, one daily
cap.  Changing any of these changes the meaning of every stored
``points_earned`` value, so they are constants rather than settings.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Accrual policy
# ---------------------------------------------------------------------------
FIRST_HOUR_POINTS = 5        # points per hour while the daily total is below 1h
REST_HOURS_POINTS = 2        # points per hour for every daily hour after the first
MAX_HOURS_PER_DAY = 15       # daily cap: hours past this earn no points
ROUND_UP_MINUTES = 55        # 55-minute rule: remainder >= 55 rounds up

# Minimum single-session minutes for a day to count towards a streak
MIN_STREAK_MINUTES = 15

# ---------------------------------------------------------------------------
# Timezones
# ---------------------------------------------------------------------------
REFERENCE_TIMEZONE = "UTC"

# Local hour used instead of midnight when midnight is skipped or repeated
DST_SAFE_RESET_HOUR = 3

# ---------------------------------------------------------------------------
# Reset scheduler
# ---------------------------------------------------------------------------
# Coarse candidate filters: a cursor younger than these cannot be due yet.
# A local day can be 23h long and a DST-shifted reset lands 2h late, so the
# daily bound stays below 21h; the shortest month is 28 days.
DAILY_RESET_MIN_AGE_HOURS = 20
MONTHLY_RESET_MIN_AGE_DAYS = 27
DAILY_RESET_BATCH_SIZE = 50
MONTHLY_RESET_BATCH_SIZE = 25
RESET_BATCH_PAUSE_SECONDS = 0.1

# Session recovery after a crash
RECOVERY_STALE_HOURS = 24
RECOVERY_MAX_CREDIT_HOURS = 3

# ---------------------------------------------------------------------------
# Houses
# ---------------------------------------------------------------------------
DEFAULT_HOUSES: tuple[str, ...] = ("Gryffindor", "Hufflepuff", "Ravenclaw", "Slytherin")

HOUSE_EMOJI: dict[str, str] = {
    "Gryffindor": "\U0001f981",  # 🦁
    "Hufflepuff": "\U0001f9a1",  # 🦡
    "Ravenclaw": "\U0001f985",   # 🦅
    "Slytherin": "\U0001f40d",   # 🐍
}

HOUSE_COLORS: dict[str, int] = {
    "Gryffindor": 0x7C0A02,
    "Hufflepuff": 0xFFD700,
    "Ravenclaw": 0x0E1A40,
    "Slytherin": 0x1A472A,
}

RANK_BADGES: list[str] = ["\U0001f947", "\U0001f948", "\U0001f949"]  # 🥇🥈🥉


def house_emoji(name: str | None) -> str:
    """Emoji for *name*, or a neutral house icon for unknown/custom houses."""
    if not name:
        return ""
    return HOUSE_EMOJI.get(name, "\U0001f3e0")  # 🏠
