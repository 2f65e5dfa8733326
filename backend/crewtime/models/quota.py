"""Quotas, their role/department links, and custom-quota completion state."""

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger, Boolean, DateTime, ForeignKey, Integer, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from crewtime.database import Base
from crewtime.utils.clock import utcnow

METRIC_QUOTA_TYPES = (
    "mins",
    "sessions_hosted",
    "sessions_attended",
    "sessions_logged",
    "alliance_visits",
)
QUOTA_TYPES = METRIC_QUOTA_TYPES + ("custom",)
COMPLETION_TYPES = ("user_complete", "manager_signoff")


class Quota(Base):
    __tablename__ = "quotas"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    workspace_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workspaces.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # mins | sessions_hosted | sessions_attended | sessions_logged |
    # alliance_visits | custom
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    value: Mapped[int] = mapped_column(Integer, default=0)

    # custom only: user_complete | manager_signoff
    completion_type: Mapped[str | None] = mapped_column(String(30))
    # session-count quotas only: restrict to one session type ("all" = any)
    session_type: Mapped[str | None] = mapped_column(String(50))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class QuotaRole(Base):
    __tablename__ = "quota_roles"
    __table_args__ = (UniqueConstraint("quota_id", "role_id", name="uq_quota_role"),)

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    quota_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("quotas.id"), nullable=False, index=True
    )
    role_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("roles.id"), nullable=False, index=True
    )


class QuotaDepartment(Base):
    __tablename__ = "quota_departments"
    __table_args__ = (
        UniqueConstraint("quota_id", "department_id", name="uq_quota_department"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    quota_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("quotas.id"), nullable=False, index=True
    )
    department_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("departments.id"), nullable=False, index=True
    )


class UserQuotaCompletion(Base):
    """Completion state of a custom quota for one member.

    One row per (quota, user, workspace); writes are upserts so retried
    requests never create a second row.
    """
    __tablename__ = "user_quota_completions"
    __table_args__ = (
        UniqueConstraint(
            "quota_id", "user_id", "workspace_id", name="uq_quota_completion"
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    quota_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("quotas.id"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    workspace_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workspaces.id"), nullable=False, index=True
    )

    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    completed_by: Mapped[int | None] = mapped_column(BigInteger)
    notes: Mapped[str | None] = mapped_column(Text)

    archived: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    archive_start_date: Mapped[datetime | None] = mapped_column(DateTime)
    archive_end_date: Mapped[datetime | None] = mapped_column(DateTime)
