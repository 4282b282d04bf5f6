"""
hourglass.bot.cogs.voice — Voice Presence Tracking
===================================================

Turns ``on_voice_state_update`` into :class:`PresenceEvent` envelopes and
hands them to the session service (join → start, leave → end, move → end
old + start new).  A five-minute sweep splits intervals that crossed a
member's local midnight.

Cap and midnight notifications are delivered by DM *after* the database
work has committed; a closed DM is logged and otherwise ignored.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands, tasks

from hourglass.database.engine import run_db
from hourglass.engine.events import Notification, PresenceEvent
from hourglass.services.embeds import build_notification_embed
from hourglass.services.session_service import apply_presence_event, split_stale_sessions

if TYPE_CHECKING:
    from hourglass.bot.core import HourglassBot

logger = logging.getLogger(__name__)

MIDNIGHT_SWEEP_MINUTES = 5


class Voice(commands.Cog, name="Voice"):
    """Tracks voice channel presence and accrues points when intervals close."""

    def __init__(self, bot: HourglassBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.midnight_sweep.start()

    async def cog_unload(self) -> None:
        self.midnight_sweep.cancel()

    # -------------------------------------------------------------------
    # Gateway listener
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        """Track voice join/leave/move events."""
        if member.bot:
            return
        event = PresenceEvent.from_channels(
            member.id,
            member.display_name,
            before.channel.id if before.channel else None,
            after.channel.id if after.channel else None,
            after_channel_name=after.channel.name if after.channel else None,
            house=self.bot.house_for(member),
        )
        if event is None:
            # mute/deafen/stream toggles
            return
        logger.info(
            "Gateway event: VOICE_STATE %s %s (%s → %s)",
            member.name, event.action, event.before_channel_id, event.after_channel_id,
        )
        try:
            notes = await run_db(
                apply_presence_event,
                self.bot.engine,
                event,
                excluded_channel_ids=self.bot.cfg.excluded_voice_channel_ids,
                cache=self.bot.stats_cache,
            )
        except Exception:
            logger.exception("Error processing voice state update for user %s", member.id)
            return
        await self._deliver(notes, member)

    # -------------------------------------------------------------------
    # Midnight sweep
    # -------------------------------------------------------------------
    @tasks.loop(minutes=MIDNIGHT_SWEEP_MINUTES)
    async def midnight_sweep(self):
        """Split open intervals whose local day has ended."""
        try:
            outcomes = await run_db(
                split_stale_sessions, self.bot.engine, cache=self.bot.stats_cache,
            )
        except Exception:
            logger.exception("Midnight sweep failed", extra={"task": "midnight_sweep"})
            return
        for outcome in outcomes:
            await self._deliver(outcome.notifications)
        if outcomes:
            logger.info("Midnight sweep split %d interval(s)", len(outcomes))

    @midnight_sweep.before_loop
    async def _wait_midnight_sweep(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Notification delivery
    # -------------------------------------------------------------------
    async def _deliver(
        self, notes: list[Notification], user: discord.abc.User | None = None,
    ) -> None:
        for note in notes:
            target = user if user is not None and user.id == note.member_id else None
            try:
                if target is None:
                    target = self.bot.get_user(note.member_id) or await self.bot.fetch_user(
                        note.member_id
                    )
                await target.send(embed=build_notification_embed(note))
            except discord.HTTPException as exc:
                logger.warning(
                    "Could not DM %s notification to %s: %s",
                    note.kind, note.member_id, exc,
                )


async def setup(bot: HourglassBot) -> None:
    await bot.add_cog(Voice(bot))
