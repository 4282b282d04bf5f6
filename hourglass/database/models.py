"""
hourglass.database.models — SQLAlchemy 2.0 Data Models
=======================================================

Tables:
- members                  — Community member profiles (Discord snowflake PK)
- voice_sessions           — Presence intervals, one open row per (member, channel)
- daily_voice_stats        — Per (member, local date) cumulative minutes & points
- monthly_voice_summaries  — Closed-month history written by the monthly reset
- houses                   — Team aggregates (monthly + all-time points)
- house_monthly_summaries  — Closed-month house history written by the global reset
- scheduler_runs           — Reset scheduler status, one row per job

All timestamps are stored in UTC.  Calendar dates (``date`` columns) are
already localised to the member's timezone at the moment they were written.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from hourglass.constants import REFERENCE_TIMEZONE


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Hourglass ORM models."""


# ---------------------------------------------------------------------------
# Houses: team aggregates
# ---------------------------------------------------------------------------
class House(Base):
    """A team whose monthly/all-time points aggregate its members' earnings.

    Mutated only through :func:`hourglass.services.team_service.add_house_points`
    (advisory-locked) and the global monthly reset.
    """
    __tablename__ = "houses"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    monthly_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    all_time_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_monthly_reset: Mapped[date | None] = mapped_column(Date, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    members: Mapped[list[Member]] = relationship(back_populates="house_row")

    def __repr__(self) -> str:
        return f"<House name={self.name!r} monthly={self.monthly_points}>"


# ---------------------------------------------------------------------------
# Members: one row per Discord member
# ---------------------------------------------------------------------------
class Member(Base):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Timezone
    timezone: Mapped[str] = mapped_column(
        String(64), nullable=False, default=REFERENCE_TIMEZONE
    )
    timezone_set_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    previous_timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    house: Mapped[str | None] = mapped_column(
        String(50), ForeignKey("houses.name", ondelete="SET NULL"), nullable=True
    )

    # Streak
    current_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_streak_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Live daily counters: mirror of daily_voice_stats for ``daily_date``
    daily_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    daily_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    daily_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    daily_limit_reached: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Monthly / lifetime totals
    monthly_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    monthly_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    all_time_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    all_time_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Reset cursors
    last_daily_reset: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_monthly_reset: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    house_row: Mapped[House | None] = relationship(back_populates="members")
    sessions: Mapped[list[VoiceSession]] = relationship(
        back_populates="member", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_members_monthly_points", "monthly_points"),
        Index("ix_members_all_time_points", "all_time_points"),
        Index("ix_members_last_daily_reset", "last_daily_reset"),
        Index("ix_members_last_monthly_reset", "last_monthly_reset"),
    )

    def __repr__(self) -> str:
        return f"<Member id={self.id} name={self.display_name!r} tz={self.timezone!r}>"


# ---------------------------------------------------------------------------
# VoiceSession: presence interval
# ---------------------------------------------------------------------------
class VoiceSession(Base):
    """One span of voice presence for a member in one channel.

    ``date`` is the member-local calendar day the interval is attributed to.
    It is fixed at creation; a midnight split closes the row and opens a
    successor (``split_from_id`` points back at the closed row).
    """
    __tablename__ = "voice_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    left_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    points_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    split_from_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("voice_sessions.id", ondelete="SET NULL"), nullable=True
    )
    recovery_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    member: Mapped[Member] = relationship(back_populates="sessions")

    __table_args__ = (
        # At most one open interval per (member, channel)
        Index(
            "uq_voice_sessions_open",
            "member_id",
            "channel_id",
            unique=True,
            postgresql_where=left_at.is_(None),
            sqlite_where=left_at.is_(None),
        ),
        Index("ix_voice_sessions_member_date", "member_id", "date"),
        Index("ix_voice_sessions_joined_at", "joined_at"),
    )

    @property
    def is_open(self) -> bool:
        return self.left_at is None

    def __repr__(self) -> str:
        state = "open" if self.left_at is None else f"{self.duration_minutes}m"
        return f"<VoiceSession id={self.id} member={self.member_id} date={self.date} {state}>"


# ---------------------------------------------------------------------------
# DailyVoiceStats: per (member, local date) aggregate
# ---------------------------------------------------------------------------
class DailyVoiceStats(Base):
    """Cumulative minutes per member per local day.

    ``points_earned`` is always recomputed from ``total_minutes`` with
    :func:`hourglass.engine.accrual.daily_points_for_minutes`; it is never
    incremented on its own.
    """
    __tablename__ = "daily_voice_stats"

    member_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("members.id", ondelete="CASCADE"), primary_key=True
    )
    date: Mapped[date] = mapped_column(Date, primary_key=True)
    total_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    session_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    points_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_daily_voice_stats_date", "date"),
    )

    def __repr__(self) -> str:
        return (
            f"<DailyVoiceStats member={self.member_id} date={self.date} "
            f"minutes={self.total_minutes} points={self.points_earned}>"
        )


# ---------------------------------------------------------------------------
# MonthlyVoiceSummary: history row written before a monthly reset
# ---------------------------------------------------------------------------
class MonthlyVoiceSummary(Base):
    __tablename__ = "monthly_voice_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("members.id", ondelete="CASCADE"), nullable=False
    )
    year_month: Mapped[str] = mapped_column(String(7), nullable=False)  # YYYY-MM
    total_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("member_id", "year_month", name="uq_monthly_summary_member_month"),
    )

    def __repr__(self) -> str:
        return f"<MonthlyVoiceSummary member={self.member_id} month={self.year_month}>"


# ---------------------------------------------------------------------------
# HouseMonthlySummary: history row written before the global house reset
# ---------------------------------------------------------------------------
class HouseMonthlySummary(Base):
    __tablename__ = "house_monthly_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    house_name: Mapped[str] = mapped_column(String(50), nullable=False)
    year_month: Mapped[str] = mapped_column(String(7), nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("house_name", "year_month", name="uq_house_summary_house_month"),
    )

    def __repr__(self) -> str:
        return f"<HouseMonthlySummary house={self.house_name!r} month={self.year_month}>"


# ---------------------------------------------------------------------------
# SchedulerRun: persisted scheduler status (readable from the API process)
# ---------------------------------------------------------------------------
class SchedulerRun(Base):
    __tablename__ = "scheduler_runs"

    job: Mapped[str] = mapped_column(String(50), primary_key=True)
    last_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    runs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_successful: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_errors: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    def __repr__(self) -> str:
        return f"<SchedulerRun job={self.job!r} runs={self.runs}>"
