"""Initial voice accrual schema

Revision ID: 5c0e7a1f3b92
Revises:
Create Date: 2026-10-18 09:12:41.208113

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5c0e7a1f3b92'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Members, voice sessions, daily/monthly aggregates, houses, scheduler runs."""

    # --- houses ---
    op.create_table(
        "houses",
        sa.Column("name", sa.String(50), primary_key=True),
        sa.Column("monthly_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("all_time_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_monthly_reset", sa.Date, nullable=True),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(),
        ),
    )

    # --- members ---
    op.create_table(
        "members",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("timezone_set_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("previous_timezone", sa.String(64), nullable=True),
        sa.Column(
            "house", sa.String(50),
            sa.ForeignKey("houses.name", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("current_streak", sa.Integer, nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_streak_date", sa.Date, nullable=True),
        sa.Column("daily_date", sa.Date, nullable=True),
        sa.Column("daily_minutes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("daily_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "daily_limit_reached", sa.Boolean, nullable=False, server_default=sa.false(),
        ),
        sa.Column("monthly_hours", sa.Float, nullable=False, server_default="0"),
        sa.Column("monthly_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("all_time_hours", sa.Float, nullable=False, server_default="0"),
        sa.Column("all_time_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_daily_reset", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_monthly_reset", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_members_monthly_points", "members", ["monthly_points"])
    op.create_index("ix_members_all_time_points", "members", ["all_time_points"])
    op.create_index("ix_members_last_daily_reset", "members", ["last_daily_reset"])
    op.create_index("ix_members_last_monthly_reset", "members", ["last_monthly_reset"])

    # --- voice_sessions ---
    op.create_table(
        "voice_sessions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "member_id", sa.BigInteger,
            sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("channel_id", sa.BigInteger, nullable=False),
        sa.Column("channel_name", sa.String(100), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer, nullable=True),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("points_earned", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "split_from_id", sa.Integer,
            sa.ForeignKey("voice_sessions.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("recovery_note", sa.Text, nullable=True),
    )
    op.create_index(
        "uq_voice_sessions_open",
        "voice_sessions",
        ["member_id", "channel_id"],
        unique=True,
        postgresql_where=sa.text("left_at IS NULL"),
        sqlite_where=sa.text("left_at IS NULL"),
    )
    op.create_index("ix_voice_sessions_member_date", "voice_sessions", ["member_id", "date"])
    op.create_index("ix_voice_sessions_joined_at", "voice_sessions", ["joined_at"])

    # --- daily_voice_stats ---
    op.create_table(
        "daily_voice_stats",
        sa.Column(
            "member_id", sa.BigInteger,
            sa.ForeignKey("members.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("date", sa.Date, primary_key=True),
        sa.Column("total_minutes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("session_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("points_earned", sa.Integer, nullable=False, server_default="0"),
        sa.Column("archived", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_daily_voice_stats_date", "daily_voice_stats", ["date"])

    # --- monthly_voice_summaries ---
    op.create_table(
        "monthly_voice_summaries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "member_id", sa.BigInteger,
            sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("year_month", sa.String(7), nullable=False),
        sa.Column("total_hours", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "member_id", "year_month", name="uq_monthly_summary_member_month",
        ),
    )

    # --- house_monthly_summaries ---
    op.create_table(
        "house_monthly_summaries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("house_name", sa.String(50), nullable=False),
        sa.Column("year_month", sa.String(7), nullable=False),
        sa.Column("total_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "house_name", "year_month", name="uq_house_summary_house_month",
        ),
    )

    # --- scheduler_runs ---
    op.create_table(
        "scheduler_runs",
        sa.Column("job", sa.String(50), primary_key=True),
        sa.Column("last_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("runs", sa.Integer, nullable=False, server_default="0"),
        sa.Column("successful_total", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failed_total", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_successful", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_skipped", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_failed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_errors", postgresql.JSONB, nullable=True),
    )


def downgrade() -> None:
    op.drop_table("scheduler_runs")
    op.drop_table("house_monthly_summaries")
    op.drop_table("monthly_voice_summaries")
    op.drop_index("ix_daily_voice_stats_date", table_name="daily_voice_stats")
    op.drop_table("daily_voice_stats")
    op.drop_index("ix_voice_sessions_joined_at", table_name="voice_sessions")
    op.drop_index("ix_voice_sessions_member_date", table_name="voice_sessions")
    op.drop_index("uq_voice_sessions_open", table_name="voice_sessions")
    op.drop_table("voice_sessions")
    op.drop_index("ix_members_last_monthly_reset", table_name="members")
    op.drop_index("ix_members_last_daily_reset", table_name="members")
    op.drop_index("ix_members_all_time_points", table_name="members")
    op.drop_index("ix_members_monthly_points", table_name="members")
    op.drop_table("members")
    op.drop_table("houses")
