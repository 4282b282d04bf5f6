"""
hourglass.services.embeds — Discord embed builders
===================================================

All embed construction lives here so the cogs only supply data.  Nothing
in this module touches the database.
"""

from __future__ import annotations

import discord

from hourglass.constants import HOUSE_COLORS, MAX_HOURS_PER_DAY, RANK_BADGES, house_emoji
from hourglass.engine.events import Notification, NotificationKind


def _rank_label(rank: int) -> str:
    return RANK_BADGES[rank - 1] if rank <= len(RANK_BADGES) else f"**#{rank}**"


def _format_duration(hours: float) -> str:
    total = int(round(hours * 60))
    h, m = divmod(max(total, 0), 60)
    return f"{h}h {m:02d}m"


# ---------------------------------------------------------------------------
# Notifications (sent by DM)
# ---------------------------------------------------------------------------
def build_notification_embed(note: Notification) -> discord.Embed:
    """Embed for a cap or midnight-split notification."""
    if note.kind is NotificationKind.LIMIT_ALREADY_REACHED:
        embed = discord.Embed(
            title="\U0001f6ab Daily Voice Time Limit Reached!",
            description=(
                f"You've already earned points for {MAX_HOURS_PER_DAY} hours of voice "
                "time today. Hours are still recorded, but no points were awarded."
            ),
            color=discord.Color.red(),
        )
    elif note.kind is NotificationKind.LIMIT_REACHED:
        embed = discord.Embed(
            title="⚠️ Daily Voice Time Limit Reached!",
            description=(
                f"Points were awarded proportionally for the time within the "
                f"{MAX_HOURS_PER_DAY}-hour daily limit. All hours are recorded."
            ),
            color=discord.Color.orange(),
        )
        embed.add_field(name="Points Earned", value=str(note.points))
    else:
        embed = discord.Embed(
            title="\U0001f305 New Day, Fresh Start!",
            description=(
                "Your daily voice time limit has reset. You can earn points for up "
                f"to {MAX_HOURS_PER_DAY} more hours today."
            ),
            color=discord.Color.blurple(),
        )
        embed.add_field(
            name=f"{note.day:%b %d}",
            value=f"{note.points} points for {note.session_hours:.1f} hours",
        )

    if note.kind is not NotificationKind.MIDNIGHT_SPLIT:
        embed.add_field(name="Today's Voice Time", value=f"{note.daily_hours:.1f} hours")
        embed.set_footer(text=f"Limit: {MAX_HOURS_PER_DAY}.0 hours per day for points")
    return embed


# ---------------------------------------------------------------------------
# Command replies
# ---------------------------------------------------------------------------
def build_daily_limit_embed(info: dict) -> discord.Embed:
    """Embed for ``/dailylimit`` (takes ``DailyLimitInfo.to_dict()``)."""
    limit_reached = info["limit_reached"]
    embed = discord.Embed(
        title="⏳ Daily Voice Limit",
        color=discord.Color.red() if limit_reached else discord.Color.green(),
    )
    embed.add_field(name="Today", value=_format_duration(info["daily_hours"]))
    embed.add_field(
        name="Point-earning time left",
        value=_format_duration(info["remaining_hours"]),
    )
    embed.add_field(
        name="Until local midnight",
        value=_format_duration(info["hours_until_midnight"]),
    )
    if limit_reached:
        embed.description = "You've hit today's cap. Time is still recorded."
    elif info["limited_by"] == "time":
        embed.description = "Your allowance resets at local midnight before it runs out."
    embed.set_footer(text=f"{info['timezone']} • {info['date']}")
    return embed


def build_stats_embed(stats: dict, avatar_url: str | None = None) -> discord.Embed:
    house = stats.get("house")
    color = discord.Color(HOUSE_COLORS.get(house, 0x5865F2)) if house else discord.Color.blurple()
    title = f"{house_emoji(house)} {stats['display_name']}".strip()
    embed = discord.Embed(title=title, color=color)
    today = stats["today"]
    embed.add_field(
        name="Today",
        value=f"{_format_duration(today['minutes'] / 60)} • {today['points']} pts",
    )
    embed.add_field(
        name="This Month",
        value=(
            f"{stats['monthly_hours']:.1f}h • {stats['monthly_points']} pts "
            f"(#{stats['monthly_rank']})"
        ),
    )
    embed.add_field(
        name="All Time",
        value=f"{stats['all_time_hours']:.1f}h • {stats['all_time_points']} pts",
    )
    embed.add_field(
        name="\U0001f525 Streak",
        value=f"{stats['current_streak']} days (best {stats['longest_streak']})",
    )
    if avatar_url:
        embed.set_thumbnail(url=avatar_url)
    embed.set_footer(text=stats["timezone"])
    return embed


def build_leaderboard_embed(rows: list[dict], period: str, community_name: str) -> discord.Embed:
    label = "Monthly" if period == "monthly" else "All-Time"
    embed = discord.Embed(
        title=f"\U0001f3c6 {community_name} — {label} Leaderboard",
        color=discord.Color.gold(),
    )
    if not rows:
        embed.description = "No voice time recorded yet."
        return embed
    lines = [
        f"{_rank_label(r['rank'])} {house_emoji(r['house'])} **{r['display_name']}** "
        f"— {r['points']} pts ({r['hours']:.1f}h)"
        for r in rows
    ]
    embed.description = "\n".join(lines)
    return embed


def build_house_embed(rows: list[dict], period: str) -> discord.Embed:
    label = "This Month" if period == "monthly" else "All Time"
    embed = discord.Embed(title=f"\U0001f3f0 House Points — {label}", color=discord.Color.purple())
    if not rows:
        embed.description = "No houses configured."
        return embed
    embed.description = "\n".join(
        f"{_rank_label(r['rank'])} {house_emoji(r['name'])} **{r['name']}** "
        f"— {r['points']} pts • {r['member_count']} members"
        for r in rows
    )
    return embed


def build_reset_result_embed(label: str, result: dict | None) -> discord.Embed:
    """Admin reply for a forced reset (takes ``BatchResult.to_dict()``)."""
    if result is None:
        return discord.Embed(
            title=f"⏸️ {label} not started",
            description="A pass is already running or the scheduler is stopping.",
            color=discord.Color.orange(),
        )
    embed = discord.Embed(
        title=f"\U0001f504 {label} complete",
        color=discord.Color.red() if result["failed"] else discord.Color.green(),
    )
    embed.add_field(name="Candidates", value=str(result["candidates"]))
    embed.add_field(name="Reset", value=str(result["successful"]))
    embed.add_field(name="Skipped", value=str(result["skipped"]))
    embed.add_field(name="Failed", value=str(result["failed"]))
    if result["errors"]:
        sample = result["errors"][:5]
        embed.add_field(
            name="Failures",
            value="\n".join(f"`{e['member_id']}` ({e['timezone']}): {e['error'][:80]}"
                            for e in sample),
            inline=False,
        )
    return embed


def build_scheduler_status_embed(status: dict) -> discord.Embed:
    state = "started" if status["is_running"] else "stopped"
    in_flight = ", ".join(status["running_jobs"]) or "idle"
    embed = discord.Embed(
        title="\U0001f552 Reset Scheduler",
        description=f"Scheduler {state}. Running now: {in_flight}",
        color=discord.Color.blurple(),
    )
    for job, info in status["jobs"].items():
        last = info["last_finished_at"] or "never"
        embed.add_field(
            name=job.replace("_", " ").title(),
            value=(
                f"Last: {last}\n"
                f"✅ {info['success_count']} • ❌ {info['failure_count']}"
            ),
        )
    health = status.get("health")
    if health:
        embed.set_footer(text=f"Health: {health['status']}")
    return embed
