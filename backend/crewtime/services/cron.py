"""Cron fan-out - per-tick work across workspaces.

No scheduler loop runs in-process: an external cron hits
/api/cron/reset-activity and /api/cron/update-ranks, and each request
fans out here.

Modes (per tick):
    sequential  one workspace at a time, CRON_DELAY_SECONDS between
                them.  Used when CRON_SEQUENTIAL or MULTI_CONTAINER is
                set, so replicas sharing a database stay gentle on it.
    concurrent  resets run under asyncio.gather; rank syncs are
                fire-and-forget tasks and the request returns at once.

With MULTI_CONTAINER=true only workspaces in the active batch (see
batch_scheduler) are processed.  Each workspace gets its own session.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crewtime.config import settings
from crewtime.database import async_session
from crewtime.models.member import WorkspaceMember
from crewtime.models.workspace import Workspace
from crewtime.services.batch_scheduler import get_active_batch, log_batch_schedule
from crewtime.services.directory import DirectoryClient

logger = logging.getLogger("crewtime.cron")

# Strong references to fire-and-forget syncs
_background: set[asyncio.Task] = set()


def is_sequential() -> bool:
    return settings.cron_sequential or settings.multi_container


async def list_workspaces(
    session_factory: async_sessionmaker, batch_id: int | None = None
) -> list[tuple[int, str | None]]:
    async with session_factory() as db:
        stmt = select(Workspace.id, Workspace.name).order_by(Workspace.id)
        if batch_id is not None:
            stmt = stmt.where(Workspace.batch_id == batch_id)
        result = await db.execute(stmt)
        return [(row.id, row.name) for row in result.all()]


async def fan_out(
    items: Iterable,
    worker: Callable[..., Awaitable],
    *,
    sequential: bool | None = None,
    delay_seconds: float | None = None,
) -> list:
    """Run `worker` over items and collect results in item order.

    The worker is responsible for catching its own per-item failures.
    """
    items = list(items)
    sequential = is_sequential() if sequential is None else sequential
    delay = settings.cron_delay_seconds if delay_seconds is None else delay_seconds

    if not sequential:
        return list(await asyncio.gather(*(worker(item) for item in items)))

    results = []
    for index, item in enumerate(items):
        results.append(await worker(item))
        if delay > 0 and index < len(items) - 1:
            logger.debug("Waiting %.1fs before next workspace", delay)
            await asyncio.sleep(delay)
    return results


# ── Rank sync ───────────────────────────────────────────────

async def sync_member_ranks(
    db: AsyncSession, workspace_id: int, directory: DirectoryClient
) -> int:
    """Copy each member's directory role id onto WorkspaceMember.rank_id.

    Members missing from the directory keep their last known rank.
    Returns the number of members whose rank changed.
    """
    directory_members = await directory.get_members(workspace_id)
    role_by_user = {m.user_id: m.role_id for m in directory_members}

    result = await db.execute(
        select(WorkspaceMember).where(WorkspaceMember.workspace_id == workspace_id)
    )
    changed = 0
    for member in result.scalars().all():
        role_id = role_by_user.get(member.user_id)
        if role_id is not None and member.rank_id != role_id:
            member.rank_id = role_id
            changed += 1
    await db.commit()
    return changed


async def _sync_workspace(
    session_factory: async_sessionmaker, workspace_id: int, directory: DirectoryClient
) -> None:
    try:
        async with session_factory() as db:
            changed = await sync_member_ranks(db, workspace_id, directory)
        logger.info("Synced ranks for workspace %s (%d changed)", workspace_id, changed)
    except Exception:
        logger.exception("Rank sync failed for workspace %s", workspace_id)


def _spawn(coro) -> asyncio.Task:
    task = asyncio.create_task(coro)
    _background.add(task)
    task.add_done_callback(_background.discard)
    return task


async def wait_for_background() -> None:
    """Await fire-and-forget syncs (shutdown and tests)."""
    if _background:
        await asyncio.gather(*list(_background), return_exceptions=True)


async def run_rank_sync(
    directory: DirectoryClient,
    session_factory: async_sessionmaker = async_session,
    workspace_id: int | None = None,
    sequential: bool | None = None,
    delay_seconds: float | None = None,
) -> dict:
    """Start rank sync for one workspace or the active batch.

    Returns {"started", "workspaces", "batch_id"}.
    """
    if workspace_id is not None:
        _spawn(_sync_workspace(session_factory, workspace_id, directory))
        return {"started": 1, "workspaces": [workspace_id], "batch_id": None}

    batch_id = get_active_batch()
    if settings.multi_container:
        log_batch_schedule()

    workspace_ids = [ws_id for ws_id, _ in await list_workspaces(session_factory, batch_id)]
    sequential = is_sequential() if sequential is None else sequential

    if sequential:
        logger.info(
            "Rank sync: sequential over %d workspaces (batch=%s)", len(workspace_ids), batch_id
        )
        await fan_out(
            workspace_ids,
            lambda ws_id: _sync_workspace(session_factory, ws_id, directory),
            sequential=True,
            delay_seconds=delay_seconds,
        )
    else:
        logger.info("Rank sync: starting %d workspaces in parallel", len(workspace_ids))
        for ws_id in workspace_ids:
            _spawn(_sync_workspace(session_factory, ws_id, directory))

    return {"started": len(workspace_ids), "workspaces": workspace_ids, "batch_id": batch_id}
