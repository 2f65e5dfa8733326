"""Session ledger - start / end / bulk-close of tracked in-game sessions.

At most one active, non-archived session exists per (user, workspace);
a partial unique index backs the check.  A second start signal is a
conflict.  Archived sessions belong to a closed period and are never
modified again.

An end signal with no active session looks for a session of that user
closed within RECENT_END_WINDOW (closed by a bulk-end when the game
server shut down) so the session_ended notification still fires with
the client-reported idle/messages.
"""

import logging
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crewtime.middleware.exceptions import ConflictError, ResourceNotFoundError
from crewtime.models.activity import ActivitySession
from crewtime.models.member import User
from crewtime.models.workspace import Workspace
from crewtime.services.notifications import Notifier
from crewtime.utils.clock import utcnow

logger = logging.getLogger("crewtime.sessions")

RECENT_END_WINDOW = timedelta(seconds=60)


def _session_message(universe_id: int | None, started_at) -> str:
    where = f"place {universe_id}" if universe_id else "game"
    return f"Joined {where} at {started_at:%H:%M} UTC"


def _session_payload(session: ActivitySession) -> dict:
    return {
        "session_id": session.id,
        "user_id": session.user_id,
        "start_time": session.start_time.isoformat(),
        "end_time": session.end_time.isoformat() if session.end_time else None,
        "idle_time": session.idle_time,
        "messages": session.messages,
        "session_message": session.session_message,
    }


async def ensure_user(db: AsyncSession, user_id: int, username: str | None = None) -> User:
    """Create the User row on first sight; refresh the username when given."""
    user = await db.get(User, user_id)
    if user is None:
        user = User(id=user_id, username=username)
        db.add(user)
    elif username:
        user.username = username
    await db.flush()
    return user


async def get_active_session(
    db: AsyncSession, workspace_id: int, user_id: int
) -> ActivitySession | None:
    result = await db.execute(
        select(ActivitySession)
        .where(
            ActivitySession.workspace_id == workspace_id,
            ActivitySession.user_id == user_id,
            ActivitySession.active == True,  # noqa: E712
            ActivitySession.archived == False,  # noqa: E712
        )
        .order_by(ActivitySession.start_time.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def start_session(
    db: AsyncSession,
    workspace: Workspace,
    user_id: int,
    universe_id: int | None = None,
) -> ActivitySession:
    await ensure_user(db, user_id)

    if await get_active_session(db, workspace.id, user_id) is not None:
        raise ConflictError("Session already initialized", error_code="SESSION_ACTIVE")

    now = utcnow()
    session = ActivitySession(
        user_id=user_id,
        workspace_id=workspace.id,
        start_time=now,
        active=True,
        universe_id=universe_id,
        session_message=_session_message(universe_id, now),
    )
    db.add(session)
    try:
        await db.commit()
    except IntegrityError:
        # a concurrent start signal won the race
        await db.rollback()
        raise ConflictError("Session already initialized", error_code="SESSION_ACTIVE")

    logger.info("Session started: user=%s workspace=%s", user_id, workspace.id)
    return session


async def end_session(
    db: AsyncSession,
    workspace: Workspace,
    user_id: int,
    idle_time: int | None = None,
    messages: int | None = None,
    notifier: Notifier | None = None,
) -> ActivitySession:
    session = await get_active_session(db, workspace.id, user_id)

    if session is None:
        session = await _recently_ended_session(db, workspace.id, user_id)
        if session is None:
            raise ResourceNotFoundError("Active session", f"user {user_id}")

        if idle_time is not None:
            session.idle_time = idle_time
        if messages is not None:
            session.messages = messages
        await db.commit()
        logger.info("Late end signal for bulk-closed session %s", session.id)
    else:
        session.end_time = utcnow()
        session.active = False
        session.idle_time = idle_time or 0
        session.messages = messages or 0
        await db.commit()
        logger.info("Session ended: user=%s id=%s", user_id, session.id)

    if notifier is not None:
        notifier.emit("session_ended", workspace.id, _session_payload(session))
    return session


async def _recently_ended_session(
    db: AsyncSession, workspace_id: int, user_id: int
) -> ActivitySession | None:
    result = await db.execute(
        select(ActivitySession)
        .where(
            ActivitySession.workspace_id == workspace_id,
            ActivitySession.user_id == user_id,
            ActivitySession.active == False,  # noqa: E712
            ActivitySession.archived == False,  # noqa: E712
            ActivitySession.end_time >= utcnow() - RECENT_END_WINDOW,
        )
        .order_by(ActivitySession.end_time.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def bulk_close_sessions(db: AsyncSession, workspace: Workspace) -> int:
    """Close every active session in the workspace (game server shutdown)."""
    result = await db.execute(
        update(ActivitySession)
        .where(
            ActivitySession.workspace_id == workspace.id,
            ActivitySession.active == True,  # noqa: E712
            ActivitySession.archived == False,  # noqa: E712
        )
        .values(active=False, end_time=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    closed = result.rowcount or 0
    logger.info("Bulk-closed %d sessions in workspace %s", closed, workspace.id)
    return closed


async def list_active_sessions(db: AsyncSession, workspace_id: int) -> list[ActivitySession]:
    result = await db.execute(
        select(ActivitySession)
        .where(
            ActivitySession.workspace_id == workspace_id,
            ActivitySession.active == True,  # noqa: E712
            ActivitySession.archived == False,  # noqa: E712
        )
        .order_by(ActivitySession.start_time)
    )
    return list(result.scalars().all())
