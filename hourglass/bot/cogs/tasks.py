"""
hourglass.bot.cogs.tasks — Reset Scheduler Loops
=================================================

Scheduled jobs that run on ``discord.ext.tasks`` loops:

- **Daily resets** — hourly, for every member whose local day has rolled
  over since their last daily reset.
- **Global house reset** — hourly check; acts once per month in the
  server timezone.
- **Monthly resets** — every 6 hours, per member local month.
- **Health check** — every 15 minutes.

The loops only drive :class:`~hourglass.services.reset_service.ResetScheduler`;
the scheduler's per-job lock skips a tick whose predecessor is still running.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

if TYPE_CHECKING:
    from hourglass.bot.core import HourglassBot

logger = logging.getLogger(__name__)


class ResetTasks(commands.Cog):
    """Cog for the recurring reset passes."""

    def __init__(self, bot: HourglassBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        """Start task loops when the cog is loaded."""
        self.bot.scheduler.start()
        self.daily_loop.start()
        self.global_loop.start()
        self.monthly_loop.start()
        self.health_loop.start()

    async def cog_unload(self) -> None:
        """Cancel task loops on unload."""
        self.bot.scheduler.stop()
        self.daily_loop.cancel()
        self.global_loop.cancel()
        self.monthly_loop.cancel()
        self.health_loop.cancel()

    # -------------------------------------------------------------------
    # Daily resets: every hour
    # -------------------------------------------------------------------
    @tasks.loop(hours=1)
    async def daily_loop(self):
        try:
            result = await self.bot.scheduler.run_daily()
            if result is not None and (result.successful or result.failed):
                logger.info(
                    "Daily reset task complete: %d reset, %d skipped, %d failed",
                    result.successful, result.skipped, result.failed,
                )
        except Exception:
            logger.exception("Daily reset task failed", extra={"task": "daily_reset"})

    @daily_loop.before_loop
    async def _wait_daily(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Global house reset: checked every hour, acts monthly
    # -------------------------------------------------------------------
    @tasks.loop(hours=1)
    async def global_loop(self):
        try:
            result = await self.bot.scheduler.run_global()
            if result is not None and result.successful:
                logger.info("House leaderboards reset for a new month")
        except Exception:
            logger.exception("Global reset task failed", extra={"task": "global_reset"})

    @global_loop.before_loop
    async def _wait_global(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Monthly resets: every 6 hours
    # -------------------------------------------------------------------
    @tasks.loop(hours=6)
    async def monthly_loop(self):
        try:
            result = await self.bot.scheduler.run_monthly()
            if result is not None and (result.successful or result.failed):
                logger.info(
                    "Monthly reset task complete: %d reset, %d skipped, %d failed",
                    result.successful, result.skipped, result.failed,
                )
        except Exception:
            logger.exception("Monthly reset task failed", extra={"task": "monthly_reset"})

    @monthly_loop.before_loop
    async def _wait_monthly(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Health check: every 15 minutes
    # -------------------------------------------------------------------
    @tasks.loop(minutes=15)
    async def health_loop(self):
        # health_check() logs and reports failures itself
        await self.bot.scheduler.health_check()

    @health_loop.before_loop
    async def _wait_health(self):
        await self.bot.wait_until_ready()


async def setup(bot: HourglassBot) -> None:
    await bot.add_cog(ResetTasks(bot))
