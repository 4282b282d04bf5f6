"""
hourglass.bot.core — Bot Instance & Cog Loader
===============================================

**Why this file exists:**
It defines :class:`HourglassBot`, a ``commands.Bot`` subclass that:

1. Stores the shared config (``bot.cfg``), DB engine (``bot.engine``), the
   timezone resolver (``bot.timezones``), the stats read cache
   (``bot.stats_cache``) and the reset scheduler (``bot.scheduler``) so every
   Cog reaches them through ``self.bot``.
2. Loads every Cog listed in :data:`EXTENSIONS`.
3. Syncs the slash-command tree on startup (guild-scoped for dev, global
   for production — controlled by the ``DEV_GUILD_ID`` env var).
4. Runs startup recovery once: intervals left open by a crash are closed,
   members already sitting in voice are picked up again, and any missed
   daily/monthly/house resets are caught up.
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from hourglass.config import HourglassConfig
from hourglass.database.engine import run_db
from hourglass.engine.cache import StatsCache
from hourglass.services.member_service import house_from_roles
from hourglass.services.reset_service import ResetScheduler
from hourglass.services.session_service import start_session
from hourglass.services.timezone_service import TimezoneService

logger = logging.getLogger(__name__)

EXTENSIONS: list[str] = [
    "hourglass.bot.cogs.voice",
    "hourglass.bot.cogs.meta",
    "hourglass.bot.cogs.admin",
    "hourglass.bot.cogs.tasks",
]


class HourglassBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`HourglassConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    """

    def __init__(self, cfg: HourglassConfig, engine: Engine) -> None:
        # GUILD_VOICE_STATES is in default(); members is privileged and
        # needed for role-based house lookup on voice events.
        intents = discord.Intents.default()
        intents.message_content = True    # Privileged: prefix commands
        intents.members = True            # Privileged: roles → house
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} voice hours",
        )

        self.cfg = cfg
        self.engine = engine
        self.stats_cache = StatsCache()
        self.timezones = TimezoneService(engine)
        self.scheduler = ResetScheduler(
            engine, cfg, timezones=self.timezones, cache=self.stats_cache,
        )
        self._recovered = False

    # -----------------------------------------------------------------------
    # Helpers shared by cogs
    # -----------------------------------------------------------------------
    def house_for(self, member: discord.abc.User) -> str | None:
        """House from the member's roles, or ``None`` (also for non-guild users)."""
        roles = getattr(member, "roles", None) or []
        return house_from_roles((r.name for r in roles), self.cfg.houses)

    def is_tracked_channel(self, channel: discord.abc.Connectable | None) -> bool:
        return channel is not None and channel.id not in self.cfg.excluded_voice_channel_ids

    def active_voice_members(self) -> list[tuple[discord.Member, discord.VoiceChannel]]:
        """Every non-bot member currently in a tracked voice channel."""
        guild = self.get_guild(self.cfg.guild_id)
        if guild is None:
            return []
        active = []
        for channel in [*guild.voice_channels, *guild.stage_channels]:
            if not self.is_tracked_channel(channel):
                continue
            for member in channel.members:
                if not member.bot:
                    active.append((member, channel))
        return active

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all Cog extensions.  One broken Cog doesn't take down the bot."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        # --- Slash-command sync ---------------------------------------------
        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

        # on_ready fires again after every reconnect
        if not self._recovered:
            self._recovered = True
            await self._startup_recovery()

    async def close(self) -> None:
        """Graceful shutdown — let in-flight reset batches finish."""
        logger.info("Bot shutting down…")
        self.scheduler.stop()
        await super().close()

    # -----------------------------------------------------------------------
    # Startup recovery
    # -----------------------------------------------------------------------
    async def _startup_recovery(self) -> None:
        active = self.active_voice_members()
        pairs = {(member.id, channel.id) for member, channel in active}
        try:
            report = await self.scheduler.run_recovery(pairs)
            logger.info("Startup recovery complete: %s", report)
        except Exception:
            logger.exception("Startup recovery failed", extra={"task": "recovery"})

        # Members who joined while we were offline have no open interval yet
        resumed = 0
        for member, channel in active:
            try:
                info = await run_db(
                    start_session,
                    self.engine,
                    member.id,
                    channel.id,
                    display_name=member.display_name,
                    channel_name=channel.name,
                    house=self.house_for(member),
                    excluded_channel_ids=self.cfg.excluded_voice_channel_ids,
                )
            except Exception:
                logger.exception("Could not resume voice tracking for %s", member.id)
                continue
            if info is not None and info.created:
                resumed += 1
        if active:
            logger.info(
                "Voice tracking resumed: %d in voice, %d new intervals",
                len(active), resumed,
            )
