"""Activity router - session signals from game servers.

Endpoints:
    POST /api/activity/session?type=create|end   Start or end a tracked session
    POST /api/activity/session/bulk-end          Close every active session

Authenticated by the workspace activity key in the Authorization header.
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from crewtime.auth.deps import get_signal_workspace
from crewtime.database import get_db
from crewtime.middleware.exceptions import ExternalDependencyError, ValidationError
from crewtime.models.workspace import Workspace
from crewtime.schemas.activity import BulkEndResult, SessionSignal, SignalResult
from crewtime.services import session_ledger
from crewtime.services.directory import DirectoryClient, get_directory
from crewtime.services.notifications import Notifier, get_notifier
from crewtime.services.workspace_config import get_activity_config

logger = logging.getLogger("crewtime.signals")

router = APIRouter()


async def _below_tracking_rank(
    db: AsyncSession, workspace: Workspace, user_id: int, directory: DirectoryClient
) -> bool:
    config = await get_activity_config(db, workspace.id)
    if config.tracking_rank is None:
        return False
    try:
        rank = await directory.get_user_rank(workspace.id, user_id)
    except ExternalDependencyError:
        return False
    return rank <= config.tracking_rank


@router.post("/session", response_model=SignalResult)
async def session_signal(
    body: SessionSignal,
    signal_type: str = Query(..., alias="type"),
    workspace: Workspace = Depends(get_signal_workspace),
    db: AsyncSession = Depends(get_db),
    directory: DirectoryClient = Depends(get_directory),
    notifier: Notifier = Depends(get_notifier),
):
    """Record a start (`type=create`) or end (`type=end`) signal."""
    if signal_type not in ("create", "end"):
        raise ValidationError("Invalid query type (expected create or end)")

    if await _below_tracking_rank(db, workspace, body.userid, directory):
        logger.info("Ignoring signal from user %s: insufficient rank", body.userid)
        return SignalResult(recorded=False, detail="User is not the right rank")

    if signal_type == "create":
        await session_ledger.start_session(db, workspace, body.userid, universe_id=body.placeid)
    else:
        await session_ledger.end_session(
            db,
            workspace,
            body.userid,
            idle_time=body.idle_time,
            messages=body.messages,
            notifier=notifier,
        )
    return SignalResult()


@router.post("/session/bulk-end", response_model=BulkEndResult)
async def bulk_end_sessions(
    workspace: Workspace = Depends(get_signal_workspace),
    db: AsyncSession = Depends(get_db),
):
    """Close all active sessions (game server shutting down)."""
    closed = await session_ledger.bulk_close_sessions(db, workspace)
    return BulkEndResult(closed=closed)
