"""Workspace and per-workspace configuration.

A workspace mirrors one external group.  Its id is the group id from the
directory, so it is assigned by the caller rather than generated.
"""

import random
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crewtime.database import Base
from crewtime.utils.clock import utcnow

BATCH_COUNT = 4


def assign_batch_id() -> int:
    """Pick the cron batch (1..4) a workspace belongs to.  Drawn once."""
    return random.randint(1, BATCH_COUNT)


class Workspace(Base):
    __tablename__ = "workspaces"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str | None] = mapped_column(String(255))

    # Cron partition for staggered multi-replica execution
    batch_id: Mapped[int | None] = mapped_column(
        Integer, default=assign_batch_id, index=True
    )

    # ── Keys (sha256 hex digests, never the raw key) ────────
    # Authenticates in-game session signals
    activity_key_hash: Mapped[str | None] = mapped_column(String(64), unique=True, index=True)
    # Authenticates the public read API (leaderboard)
    api_key_hash: Mapped[str | None] = mapped_column(String(64), unique=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    configs = relationship("WorkspaceConfig", back_populates="workspace")


class WorkspaceConfig(Base):
    """Key-value configuration per workspace.

    Used for:
      - activity:                {"idle_time_enabled": true, "leaderboard_rank": 10,
                                  "tracking_rank": 1}
      - activity_reset_schedule: {"enabled": true, "day": "monday",
                                  "frequency": "weekly"}
    """
    __tablename__ = "workspace_configs"
    __table_args__ = (UniqueConstraint("workspace_id", "key", name="uq_workspace_config_key"),)

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    workspace_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workspaces.id"), nullable=False, index=True
    )
    key: Mapped[str] = mapped_column(String(100), nullable=False)
    value: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    workspace = relationship("Workspace", back_populates="configs")
