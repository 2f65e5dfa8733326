"""AuditLog - immutable trail of privileged actions inside a workspace.

Records who did what, when, and to which entity (quota completions,
signoffs, adjustments, manual resets).
"""

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from crewtime.database import Base
from crewtime.utils.clock import utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    workspace_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workspaces.id"), nullable=False, index=True
    )

    # ── Who ────────────────────────────────────────────────────
    # null for system actions (cron)
    user_id: Mapped[int | None] = mapped_column(BigInteger, index=True)

    # ── What ───────────────────────────────────────────────────
    # activity.quota.complete | activity.quota.signoff |
    # activity.quota.uncomplete | activity.adjust | activity.reset
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # ── Target ─────────────────────────────────────────────────
    # "quota:<id>", "user:<id>", "workspace:<id>"
    entity: Mapped[str | None] = mapped_column(String(100))
    details: Mapped[dict | None] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False, index=True
    )
