"""
Hourglass — Timezone-Aware Voice Hours for Discord
===================================================
Tracks time members spend in voice channels, turns it into points on a
tiered daily schedule, keeps per-member streaks, and resets daily and
monthly counters at each member's own local midnight.  Houses (teams)
aggregate their members' points on a shared server calendar.

Package layout::

    hourglass/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Accrual policy + house presentation
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine, async helper, advisory locks
    │   ├── models.py      # ORM models (7 tables)
    │   └── seed.py        # House seeder
    ├── engine/
    │   ├── timezones.py   # Zone validation, local dates, DST-safe reset instants
    │   ├── accrual.py     # Tiered points, 55-minute rounding, daily cap
    │   ├── streak.py      # Consecutive-day state machine
    │   ├── events.py      # PresenceEvent + Notification payloads
    │   └── cache.py       # Bounded TTL caches
    ├── services/
    │   ├── session_service.py   # Voice interval lifecycle + midnight split
    │   ├── reset_service.py     # Central reset scheduler
    │   ├── timezone_service.py  # Cached member → zone resolver
    │   ├── streak_service.py    # Streak persistence
    │   ├── team_service.py      # House totals + global monthly reset
    │   ├── stats_service.py     # Stats & leaderboards
    │   └── embeds.py            # Discord embeds
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader, startup recovery
    │   └── cogs/
    │       ├── voice.py   # Voice presence tracking + midnight sweep
    │       ├── tasks.py   # Reset loops + health check
    │       ├── meta.py    # /timezone, /dailylimit, /stats, /leaderboard, /housepoints
    │       └── admin.py   # /force-reset, /reset-status
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine / scheduler deps + JWT admin guard
        └── routes/        # Public + admin REST endpoints
"""

__version__ = "0.1.0"
