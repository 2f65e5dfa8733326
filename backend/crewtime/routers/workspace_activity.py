"""Workspace activity router - staff view, adjustments, history, manual reset.

Endpoints (prefix /api/workspaces/{workspace_id}/activity):
    GET  /users          Active users and ranked staff list (cached)
    GET  /adjustments    Current-period adjustments
    POST /adjustments    Add a signed minute correction
    GET  /history        Archived period snapshots
    POST /reset          Reset the period now
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crewtime.auth.deps import get_current_member, get_workspace, require_permission
from crewtime.auth.permissions import MANAGE_ACTIVITY, RESET_ACTIVITY, VIEW_ACTIVITY, Actor
from crewtime.database import get_db, get_session_factory
from crewtime.middleware.exceptions import PermissionDeniedError
from crewtime.models.activity import ActivityHistory
from crewtime.models.workspace import Workspace
from crewtime.schemas.activity import (
    ActivityOverview,
    AdjustmentCreate,
    AdjustmentOut,
    HistoryOut,
    ResetOut,
)
from crewtime.services import adjustment_ledger, reset as reset_service
from crewtime.services.directory import DirectoryClient, get_directory
from crewtime.services.leaderboard import ActivityViews, get_views
from crewtime.services.notifications import Notifier, get_notifier

router = APIRouter()


# ── Staff overview ───────────────────────────────────────────

@router.get("/users", response_model=ActivityOverview)
async def get_activity_users(
    workspace: Workspace = Depends(get_workspace),
    _actor: Actor = Depends(require_permission(VIEW_ACTIVITY)),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    directory: DirectoryClient = Depends(get_directory),
    views: ActivityViews = Depends(get_views),
):
    """Active users plus every member ranked by current-period minutes (cached)."""
    return await views.overview(session_factory, workspace.id, directory)


# ── Adjustments ──────────────────────────────────────────────

@router.get("/adjustments", response_model=list[AdjustmentOut])
async def list_adjustments(
    user_id: int | None = Query(default=None),
    actor: Actor = Depends(require_permission(VIEW_ACTIVITY)),
    db: AsyncSession = Depends(get_db),
):
    rows = await adjustment_ledger.list_adjustments(db, actor.workspace_id, user_id)
    return [AdjustmentOut.model_validate(r) for r in rows]


@router.post("/adjustments", response_model=AdjustmentOut, status_code=201)
async def create_adjustment(
    body: AdjustmentCreate,
    actor: Actor = Depends(require_permission(MANAGE_ACTIVITY)),
    db: AsyncSession = Depends(get_db),
    views: ActivityViews = Depends(get_views),
):
    adjustment = await adjustment_ledger.create_adjustment(
        db, actor.workspace_id, body.user_id, body.minutes, actor, reason=body.reason
    )
    await views.invalidate(actor.workspace_id)
    return AdjustmentOut.model_validate(adjustment)


# ── History ──────────────────────────────────────────────────

@router.get("/history", response_model=list[HistoryOut])
async def list_history(
    user_id: int | None = Query(default=None),
    actor: Actor = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    """Archived snapshots, newest first.  Members may always read their own."""
    if user_id is None and not actor.can(VIEW_ACTIVITY):
        user_id = actor.user_id
    if user_id != actor.user_id and not actor.can(VIEW_ACTIVITY):
        raise PermissionDeniedError(f"Missing permissions: {VIEW_ACTIVITY}")

    stmt = select(ActivityHistory).where(ActivityHistory.workspace_id == actor.workspace_id)
    if user_id is not None:
        stmt = stmt.where(ActivityHistory.user_id == user_id)
    result = await db.execute(
        stmt.order_by(ActivityHistory.period_end.desc(), ActivityHistory.user_id)
    )
    return [HistoryOut.model_validate(r) for r in result.scalars().all()]


# ── Manual reset ─────────────────────────────────────────────

@router.post("/reset", response_model=ResetOut)
async def reset_activity(
    workspace: Workspace = Depends(get_workspace),
    actor: Actor = Depends(require_permission(RESET_ACTIVITY)),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    views: ActivityViews = Depends(get_views),
):
    outcome = await reset_service.manual_reset(db, workspace, actor, notifier=notifier)
    await views.invalidate(workspace.id)
    return ResetOut(
        reset_id=outcome.reset.id,
        period_start=outcome.period_start,
        period_end=outcome.period_end,
        history_rows=outcome.history_rows,
    )
