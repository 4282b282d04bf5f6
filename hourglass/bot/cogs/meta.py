"""
hourglass.bot.cogs.meta — Member Commands
==========================================

Hybrid commands for member self-service:
- /timezone — view or set your timezone (with autocomplete)
- /dailylimit — how much point-earning voice time is left today
- /stats — your (or another member's) voice hours, points and streak
- /leaderboard — top members this month or all time
- /housepoints — house standings
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from hourglass.database.engine import run_db
from hourglass.engine.timezones import InvalidTimezoneError, now_in, search_timezones
from hourglass.services.embeds import (
    build_daily_limit_embed,
    build_house_embed,
    build_leaderboard_embed,
    build_stats_embed,
)
from hourglass.services.member_service import MemberNotFoundError
from hourglass.services.session_service import get_daily_limit_info
from hourglass.services.stats_service import (
    get_house_leaderboard,
    get_leaderboard,
    get_member_stats,
)

if TYPE_CHECKING:
    from hourglass.bot.core import HourglassBot


_PERIOD_CHOICES = [
    app_commands.Choice(name="This month", value="monthly"),
    app_commands.Choice(name="All time", value="alltime"),
]


class Meta(commands.Cog, name="Meta"):
    """Timezone, daily limit, stats and leaderboards."""

    def __init__(self, bot: HourglassBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /timezone
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="timezone",
        description="View or set your timezone for daily resets and streaks.",
    )
    @app_commands.describe(zone="IANA timezone, e.g. Europe/Berlin (leave empty to view)")
    async def timezone(self, ctx: commands.Context, zone: str | None = None) -> None:
        if zone is None:
            current = await run_db(self.bot.timezones.resolve, ctx.author.id)
            local = now_in(current)
            await ctx.send(
                f"\U0001f30d Your timezone is **{current}** (it's {local:%H:%M} there).",
                ephemeral=True,
            )
            return

        try:
            change = await run_db(
                self.bot.timezones.set,
                ctx.author.id,
                zone,
                display_name=ctx.author.display_name,
            )
        except InvalidTimezoneError:
            await ctx.send(
                f"❌ `{zone}` isn't a timezone I know. "
                "Start typing a city (e.g. `Europe/Paris`) and pick a suggestion.",
                ephemeral=True,
            )
            return

        self.bot.stats_cache.invalidate_member(ctx.author.id)
        local = now_in(change.new_timezone)
        message = (
            f"✅ Timezone set to **{change.new_timezone}** "
            f"(local time {local:%H:%M}). Daily limits and streaks now follow it."
        )
        if not change.streak_preserved:
            message += "\n⚠️ Your current streak may break with this change."
        await ctx.send(message, ephemeral=True)

    @timezone.autocomplete("zone")
    async def _timezone_autocomplete(
        self, interaction: discord.Interaction, current: str,
    ) -> list[app_commands.Choice[str]]:
        return [
            app_commands.Choice(name=f"{z} ({now_in(z):%H:%M})", value=z)
            for z in search_timezones(current, limit=25)
        ]

    # -------------------------------------------------------------------
    # /dailylimit
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="dailylimit",
        description="See how much point-earning voice time you have left today.",
    )
    async def dailylimit(self, ctx: commands.Context) -> None:
        try:
            info = await run_db(get_daily_limit_info, self.bot.engine, ctx.author.id)
        except MemberNotFoundError:
            await ctx.send(
                "You haven't spent any time in voice yet. Join a channel to get started!",
                ephemeral=True,
            )
            return
        await ctx.send(embed=build_daily_limit_embed(info.to_dict()), ephemeral=True)

    # -------------------------------------------------------------------
    # /stats
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="stats",
        description="View voice hours, points and streak.",
    )
    @app_commands.describe(member="The member to look up (defaults to you)")
    async def stats(self, ctx: commands.Context, member: discord.Member | None = None) -> None:
        target = member or ctx.author
        try:
            data = await run_db(
                get_member_stats, self.bot.engine, target.id, cache=self.bot.stats_cache,
            )
        except MemberNotFoundError:
            await ctx.send(
                f"**{target.display_name}** has no voice time recorded yet.",
                ephemeral=True,
            )
            return
        await ctx.send(embed=build_stats_embed(data, target.display_avatar.url))

    # -------------------------------------------------------------------
    # /leaderboard
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="leaderboard",
        description="Top members by voice points.",
    )
    @app_commands.describe(period="This month or all time")
    @app_commands.choices(period=_PERIOD_CHOICES)
    async def leaderboard(self, ctx: commands.Context, period: str = "monthly") -> None:
        rows = await run_db(
            get_leaderboard, self.bot.engine, period, limit=10, cache=self.bot.stats_cache,
        )
        await ctx.send(
            embed=build_leaderboard_embed(rows, period, self.bot.cfg.community_name)
        )

    # -------------------------------------------------------------------
    # /housepoints
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="housepoints",
        description="House standings.",
    )
    @app_commands.describe(period="This month or all time")
    @app_commands.choices(period=_PERIOD_CHOICES)
    async def housepoints(self, ctx: commands.Context, period: str = "monthly") -> None:
        rows = await run_db(
            get_house_leaderboard, self.bot.engine, period, cache=self.bot.stats_cache,
        )
        await ctx.send(embed=build_house_embed(rows, period))


async def setup(bot: HourglassBot) -> None:
    await bot.add_cog(Meta(bot))
