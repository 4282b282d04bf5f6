"""
hourglass.bot.cogs.admin — Admin Slash Commands
================================================

Discord slash commands for server admins:
- /force-reset — run a daily or monthly reset pass over every member now
- /reset-status — scheduler health, last runs and success/failure counts

All commands require the configured admin_role_id.  Forced passes are
idempotent: members already reset for their current local day/month are
skipped.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from hourglass.services.embeds import build_reset_result_embed, build_scheduler_status_embed

if TYPE_CHECKING:
    from hourglass.bot.core import HourglassBot

logger = logging.getLogger(__name__)


def is_admin():
    """Decorator that checks if the user has the configured admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: HourglassBot = interaction.client  # type: ignore[assignment]
        if not interaction.user or not hasattr(interaction.user, "roles"):
            return False
        admin_role_id = bot.cfg.admin_role_id
        return any(role.id == admin_role_id for role in interaction.user.roles)
    return app_commands.check(predicate)


class Admin(commands.Cog, name="Admin"):
    """Reset administration for Hourglass."""

    def __init__(self, bot: HourglassBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /force-reset
    # -------------------------------------------------------------------
    @app_commands.command(name="force-reset", description="Run a reset pass over every member now.")
    @app_commands.describe(scope="Which counters to reset")
    @app_commands.choices(scope=[
        app_commands.Choice(name="Daily", value="daily"),
        app_commands.Choice(name="Monthly", value="monthly"),
    ])
    @is_admin()
    async def force_reset(self, interaction: discord.Interaction, scope: str) -> None:
        # Large guilds take longer than the 3s interaction window
        await interaction.response.defer(ephemeral=True, thinking=True)
        logger.info("Forced %s reset by %s", scope, interaction.user.id)

        if scope == "monthly":
            result = await self.bot.scheduler.force_monthly_reset()
        else:
            result = await self.bot.scheduler.force_daily_reset()

        embed = build_reset_result_embed(
            f"{scope.title()} reset", result.to_dict() if result else None,
        )
        await interaction.followup.send(embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # /reset-status
    # -------------------------------------------------------------------
    @app_commands.command(name="reset-status", description="Show reset scheduler status.")
    @is_admin()
    async def reset_status(self, interaction: discord.Interaction) -> None:
        status = await self.bot.scheduler.status()
        await interaction.response.send_message(
            embed=build_scheduler_status_embed(status), ephemeral=True,
        )

    # -------------------------------------------------------------------
    # Error handler for missing admin role
    # -------------------------------------------------------------------
    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            await interaction.response.send_message(
                "🔒 You need the Admin role to use this command.",
                ephemeral=True,
            )
        else:
            raise error


async def setup(bot: HourglassBot) -> None:
    await bot.add_cog(Admin(bot))
