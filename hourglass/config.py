"""
hourglass.config — YAML Configuration Loader
=============================================

**Why this file exists:**
This module reads ``config.yaml`` for **infrastructure-only** settings
(Discord identity, admin role, server timezone, reset batching).  The
accrual policy is fixed and lives in :mod:`hourglass.constants`; secrets
(token, database URL, JWT secret) come from the environment.

Usage::

    from hourglass.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)    # "Study Hall"
    print(cfg.server_timezone)   # "Europe/London"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from hourglass.constants import (
    DAILY_RESET_BATCH_SIZE,
    DEFAULT_HOUSES,
    MONTHLY_RESET_BATCH_SIZE,
    REFERENCE_TIMEZONE,
    RESET_BATCH_PAUSE_SECONDS,
)
from hourglass.engine.timezones import validate_timezone


# ---------------------------------------------------------------------------
# Typed settings objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ResetConfig:
    """Batching knobs for the central reset scheduler."""

    daily_batch_size: int = DAILY_RESET_BATCH_SIZE
    monthly_batch_size: int = MONTHLY_RESET_BATCH_SIZE
    batch_pause_seconds: float = RESET_BATCH_PAUSE_SECONDS


@dataclass(frozen=True, slots=True)
class HourglassConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    bot_prefix: str
    guild_id: int  # Primary guild snowflake (for seeding & scoping)

    # Admin / Hardened Access
    admin_role_id: int  # Discord role required for admin commands

    # Shared calendar for house (team) leaderboards
    server_timezone: str = REFERENCE_TIMEZONE

    houses: tuple[str, ...] = DEFAULT_HOUSES

    # Optional
    announce_channel_id: int | None = None
    excluded_voice_channel_ids: frozenset[int] = frozenset()
    reset: ResetConfig = field(default_factory=ResetConfig)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> HourglassConfig:
    """Read *path* and return a :class:`HourglassConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If ``server_timezone`` is not a supported IANA zone.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    reset_raw: dict = raw.get("reset") or {}
    reset = ResetConfig(
        daily_batch_size=int(reset_raw.get("daily_batch_size", DAILY_RESET_BATCH_SIZE)),
        monthly_batch_size=int(
            reset_raw.get("monthly_batch_size", MONTHLY_RESET_BATCH_SIZE)
        ),
        batch_pause_seconds=float(
            reset_raw.get("batch_pause_seconds", RESET_BATCH_PAUSE_SECONDS)
        ),
    )

    return HourglassConfig(
        community_name=raw["community_name"],
        bot_prefix=raw["bot_prefix"],
        guild_id=int(raw["guild_id"]),
        admin_role_id=int(raw["admin_role_id"]),
        server_timezone=validate_timezone(
            raw.get("server_timezone") or REFERENCE_TIMEZONE
        ),
        houses=tuple(raw.get("houses") or DEFAULT_HOUSES),
        announce_channel_id=(
            int(raw["announce_channel_id"]) if raw.get("announce_channel_id") else None
        ),
        excluded_voice_channel_ids=frozenset(
            int(ch) for ch in raw.get("excluded_voice_channel_ids") or []
        ),
        reset=reset,
    )
