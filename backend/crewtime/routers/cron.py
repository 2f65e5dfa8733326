"""Cron router - externally scheduled ticks.

Endpoints:
    POST /api/cron/reset-activity   Evaluate reset schedules (active batch only
                                    when MULTI_CONTAINER is set)
    POST /api/cron/update-ranks     Sync member ranks from the directory;
                                    ?id= or {"workspaceId": ...} limits it to one

Both require the shared CRON_SECRET in x-cron-secret or Authorization.
"""

import logging

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import async_sessionmaker

from crewtime.auth.deps import verify_cron_secret
from crewtime.database import get_session_factory
from crewtime.schemas.cron import RankSyncCronOut, ResetCronOut, WorkspaceResetResult
from crewtime.services.batch_scheduler import get_active_batch, log_batch_schedule
from crewtime.services.cron import run_rank_sync
from crewtime.services.directory import DirectoryClient, get_directory
from crewtime.services.leaderboard import ActivityViews, get_views
from crewtime.services.notifications import Notifier, get_notifier
from crewtime.services.reset import run_scheduled_resets

logger = logging.getLogger("crewtime.cron")

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


@router.post("/reset-activity", response_model=ResetCronOut, response_model_by_alias=True)
async def reset_activity_tick(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    notifier: Notifier = Depends(get_notifier),
    views: ActivityViews = Depends(get_views),
):
    batch_id = get_active_batch()
    if batch_id is not None:
        log_batch_schedule()

    processed, results = await run_scheduled_resets(
        session_factory, batch_id=batch_id, notifier=notifier
    )
    reset_count = sum(1 for r in results if r["success"])
    if reset_count:
        await views.invalidate()

    return ResetCronOut(
        message=f"Processed {processed} workspaces",
        results=[WorkspaceResetResult(**r) for r in results],
        reset_count=reset_count,
    )


@router.post("/update-ranks", response_model=RankSyncCronOut, response_model_by_alias=True)
async def update_ranks_tick(
    workspace_id: int | None = Query(default=None, alias="id"),
    body: dict | None = Body(default=None),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    directory: DirectoryClient = Depends(get_directory),
):
    if workspace_id is None and body and body.get("workspaceId") is not None:
        workspace_id = int(body["workspaceId"])

    summary = await run_rank_sync(directory, session_factory, workspace_id=workspace_id)
    return RankSyncCronOut(**summary)
