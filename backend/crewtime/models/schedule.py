"""Schedule-generated sessions and other countable engagement.

ScheduledSession    - a planned session (training, shift, ...) with an
                      optional owner (host).
SessionParticipant  - a member occupying a slot in a scheduled session; a
                      role label containing "co-host" counts as hosting.
WallPost            - a post on the workspace wall.
AllyVisit           - a visit to an allied group; host plus participants.

Only the fields the activity accounting reads are modelled here.
"""

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crewtime.database import Base
from crewtime.utils.clock import utcnow


class ScheduledSession(Base):
    __tablename__ = "scheduled_sessions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    workspace_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workspaces.id"), nullable=False, index=True
    )
    owner_id: Mapped[int | None] = mapped_column(BigInteger, index=True)
    # Free-form session type, matched by Quota.session_type
    session_type: Mapped[str | None] = mapped_column(String(50))
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    archived: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    archive_start_date: Mapped[datetime | None] = mapped_column(DateTime)
    archive_end_date: Mapped[datetime | None] = mapped_column(DateTime)

    participants = relationship("SessionParticipant", back_populates="session")


class SessionParticipant(Base):
    __tablename__ = "session_participants"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("scheduled_sessions.id"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    role_name: Mapped[str] = mapped_column(String(100), default="")

    archived: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    archive_start_date: Mapped[datetime | None] = mapped_column(DateTime)
    archive_end_date: Mapped[datetime | None] = mapped_column(DateTime)

    session = relationship("ScheduledSession", back_populates="participants")

    @property
    def is_cohost(self) -> bool:
        return "co-host" in (self.role_name or "").lower()


class WallPost(Base):
    __tablename__ = "wall_posts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    workspace_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workspaces.id"), nullable=False, index=True
    )
    author_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


class AllyVisit(Base):
    __tablename__ = "ally_visits"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    workspace_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workspaces.id"), nullable=False, index=True
    )
    host_id: Mapped[int | None] = mapped_column(BigInteger)
    # list of participant user ids
    participants: Mapped[list] = mapped_column(JSON, default=list)
    time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
