"""Activity ledgers, period boundaries, and archived history.

ActivitySession     - one tracked in-game session (start/end signals).
ActivityAdjustment  - manual signed minute correction.
ActivityReset       - insert-only boundary marker; the latest row by
                      reset_at is the current period start.
ActivityHistory     - write-once per-member snapshot taken at reset time.

Sessions, adjustments and completions are never deleted: a reset flags them
`archived` and stamps the archive window, which removes them from every
current-period read.
"""

import uuid
from datetime import date, datetime

from sqlalchemy import (
    BigInteger, Boolean, Date, DateTime, ForeignKey, Index, Integer, JSON, String, Text, text,
)
from sqlalchemy.orm import Mapped, mapped_column

from crewtime.database import Base
from crewtime.utils.clock import utcnow


class ActivitySession(Base):
    __tablename__ = "activity_sessions"
    __table_args__ = (
        Index("ix_activity_sessions_ws_user_active", "workspace_id", "user_id", "active"),
        # one open, current-period session per member
        Index(
            "uq_activity_sessions_one_open",
            "workspace_id",
            "user_id",
            unique=True,
            postgresql_where=text("active AND NOT archived"),
            sqlite_where=text("active AND NOT archived"),
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    workspace_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workspaces.id"), nullable=False, index=True
    )

    start_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Minutes the client reported as idle during the session
    idle_time: Mapped[int] = mapped_column(Integer, default=0)
    messages: Mapped[int] = mapped_column(Integer, default=0)

    universe_id: Mapped[int | None] = mapped_column(BigInteger)
    session_message: Mapped[str | None] = mapped_column(Text)

    # ── Archival ─────────────────────────────────────────────
    archived: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    archive_start_date: Mapped[datetime | None] = mapped_column(DateTime)
    archive_end_date: Mapped[datetime | None] = mapped_column(DateTime)


class ActivityAdjustment(Base):
    __tablename__ = "activity_adjustments"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    workspace_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workspaces.id"), nullable=False, index=True
    )
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Signed: negative removes time
    minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False, index=True
    )

    archived: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    archive_start_date: Mapped[datetime | None] = mapped_column(DateTime)
    archive_end_date: Mapped[datetime | None] = mapped_column(DateTime)


class ActivityReset(Base):
    __tablename__ = "activity_resets"
    __table_args__ = (
        Index("ix_activity_resets_ws_reset_at", "workspace_id", "reset_at"),
        Index("uq_activity_resets_auto_day", "workspace_id", "auto_reset_date", unique=True),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    workspace_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workspaces.id"), nullable=False
    )
    reset_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    previous_period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    previous_period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    # null = automatic (cron) reset
    reset_by_id: Mapped[int | None] = mapped_column(BigInteger)
    # UTC date of an automatic reset; null for manual ones
    auto_reset_date: Mapped[date | None] = mapped_column(Date)


class ActivityHistory(Base):
    __tablename__ = "activity_history"
    __table_args__ = (
        Index("ix_activity_history_ws_user", "workspace_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    workspace_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workspaces.id"), nullable=False
    )
    period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    minutes: Mapped[int] = mapped_column(Integer, default=0)
    messages: Mapped[int] = mapped_column(Integer, default=0)
    sessions_hosted: Mapped[int] = mapped_column(Integer, default=0)
    sessions_attended: Mapped[int] = mapped_column(Integer, default=0)
    idle_time: Mapped[int] = mapped_column(Integer, default=0)
    wall_posts: Mapped[int] = mapped_column(Integer, default=0)

    # {quota_id: {"kind": "metric"|"custom", ...}} - see schemas.quota
    quota_progress: Mapped[dict] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
