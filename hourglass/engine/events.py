"""
hourglass.engine.events — PresenceEvent and Notification
=========================================================

Every Discord ``on_voice_state_update`` is normalised into a
:class:`PresenceEvent` before the session lifecycle sees it, and every
user-facing side effect of closing a session comes back out as a
:class:`Notification`.  The services never talk to Discord; the voice cog
delivers notifications and logs delivery failures.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

__all__ = ["NotificationKind", "Notification", "PresenceAction", "PresenceEvent"]


class PresenceAction(enum.StrEnum):
    JOINED = "joined"
    LEFT = "left"
    MOVED = "moved"


class NotificationKind(enum.StrEnum):
    LIMIT_REACHED = "limit_reached"                  # crossed the cap this session
    LIMIT_ALREADY_REACHED = "limit_already_reached"  # was capped before it started
    MIDNIGHT_SPLIT = "midnight_split"


# ---------------------------------------------------------------------------
# PresenceEvent: normalised voice state change
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PresenceEvent:
    """One voice presence change.

    ``before_channel_id`` is set for ``LEFT`` and ``MOVED``;
    ``after_channel_id`` for ``JOINED`` and ``MOVED``.
    """

    member_id: int
    display_name: str
    action: PresenceAction
    before_channel_id: int | None = None
    after_channel_id: int | None = None
    after_channel_name: str | None = None
    house: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_channels(
        cls,
        member_id: int,
        display_name: str,
        before_channel_id: int | None,
        after_channel_id: int | None,
        *,
        after_channel_name: str | None = None,
        house: str | None = None,
        timestamp: datetime | None = None,
    ) -> PresenceEvent | None:
        """Classify a before/after channel pair.  ``None`` if nothing moved."""
        if before_channel_id == after_channel_id:
            return None
        if before_channel_id is None:
            action = PresenceAction.JOINED
        elif after_channel_id is None:
            action = PresenceAction.LEFT
        else:
            action = PresenceAction.MOVED
        return cls(
            member_id=member_id,
            display_name=display_name,
            action=action,
            before_channel_id=before_channel_id,
            after_channel_id=after_channel_id,
            after_channel_name=after_channel_name,
            house=house,
            timestamp=timestamp or datetime.now(UTC),
        )


# ---------------------------------------------------------------------------
# Notification: payload for the presentation layer
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Notification:
    kind: NotificationKind
    member_id: int
    day: date
    daily_minutes: int
    session_minutes: int
    points: int

    @property
    def daily_hours(self) -> float:
        return self.daily_minutes / 60

    @property
    def session_hours(self) -> float:
        return self.session_minutes / 60
