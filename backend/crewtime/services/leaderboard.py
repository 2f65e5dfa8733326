"""Leaderboard ranking and the staff activity overview.

Both rank by effective time since the last reset and honour the
workspace `activity.leaderboard_rank` gate: a user is shown only when
their directory rank (WorkspaceMember.rank_id → numeric rank) is at
least the gate.  An unknown rank hides the user.  When the directory is
unreachable and no last-known-good roles exist, the gate is dropped for
that request rather than hiding everyone.
"""

import logging
import time
from datetime import datetime
from typing import Callable

from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crewtime.middleware.exceptions import ExternalDependencyError
from crewtime.models.activity import ActivitySession
from crewtime.models.member import WorkspaceMember
from crewtime.models.workspace import Workspace
from crewtime.schemas.activity import ActiveUser, ActivityOverview, StaffEntry
from crewtime.schemas.leaderboard import (
    LeaderboardEntry,
    LeaderboardOut,
    Playtime,
    SessionCountEntry,
    SessionCounts,
)
from crewtime.services import aggregator
from crewtime.services.directory import DirectoryClient
from crewtime.services.session_ledger import list_active_sessions
from crewtime.services.workspace_config import get_activity_config
from crewtime.utils.cache import ReadCache
from crewtime.utils.clock import utcnow

logger = logging.getLogger("crewtime.leaderboard")

TOP_N = 3


async def load_rank_map(directory: DirectoryClient, workspace_id: int) -> dict[int, int] | None:
    """role id → rank, or None when the directory cannot answer."""
    try:
        return await directory.get_rank_map(workspace_id)
    except ExternalDependencyError:
        logger.warning("Directory unavailable; rank gate disabled for workspace %s", workspace_id)
        return None


def passes_rank_gate(
    rank_id: int | None, rank_map: dict[int, int] | None, min_rank: int | None
) -> bool:
    if min_rank is None or rank_map is None:
        return True
    rank = rank_map.get(rank_id) if rank_id is not None else None
    return rank is not None and rank >= min_rank


async def _member_rank_ids(db: AsyncSession, workspace_id: int) -> dict[int, int | None]:
    result = await db.execute(
        select(WorkspaceMember.user_id, WorkspaceMember.rank_id).where(
            WorkspaceMember.workspace_id == workspace_id
        )
    )
    return {row.user_id: row.rank_id for row in result.all()}


async def _session_counts(
    db: AsyncSession, workspace_id: int, start: datetime, end: datetime, user_ids: list[int]
) -> dict[int, int]:
    if not user_ids:
        return {}
    result = await db.execute(
        select(ActivitySession.user_id, func.count(ActivitySession.id))
        .where(
            ActivitySession.workspace_id == workspace_id,
            ActivitySession.start_time >= start,
            ActivitySession.start_time <= end,
            ActivitySession.end_time.is_not(None),
            ActivitySession.archived == False,  # noqa: E712
            ActivitySession.user_id.in_(user_ids),
        )
        .group_by(ActivitySession.user_id)
    )
    return {user_id: count for user_id, count in result.all()}


async def build_leaderboard(
    db: AsyncSession,
    workspace: Workspace,
    directory: DirectoryClient,
    viewer_id: int | None = None,
    now: datetime | None = None,
) -> LeaderboardOut:
    now = now or utcnow()
    config = await get_activity_config(db, workspace.id)
    start = await aggregator.current_period_start(db, workspace.id)

    totals = await aggregator.effective_ms_by_user(
        db, workspace.id, start, now, config.idle_time_enabled
    )

    rank_map = None
    if config.leaderboard_rank is not None:
        rank_map = await load_rank_map(directory, workspace.id)
    rank_ids = await _member_rank_ids(db, workspace.id)

    eligible = {
        user_id: ms
        for user_id, ms in totals.items()
        if passes_rank_gate(rank_ids.get(user_id), rank_map, config.leaderboard_rank)
    }
    names = await aggregator.usernames(db, eligible.keys())
    in_game = {s.user_id for s in await list_active_sessions(db, workspace.id)}

    # Whole seconds descending, then user id
    ordered = sorted(
        eligible.items(),
        key=lambda item: (-aggregator.ms_to_seconds(item[1]), item[0]),
    )
    entries = [
        LeaderboardEntry(
            user_id=user_id,
            username=names.get(user_id),
            seconds=aggregator.ms_to_seconds(ms),
            position=index + 1,
            in_game=user_id in in_game,
        )
        for index, (user_id, ms) in enumerate(ordered)
    ]

    top = entries[:TOP_N]
    you = next((e for e in entries if e.user_id == viewer_id), None) if viewer_id else None

    counts = await _session_counts(db, workspace.id, start, now, [e.user_id for e in top])
    session_top = [
        SessionCountEntry(
            user_id=e.user_id,
            username=e.username,
            sessions=counts.get(e.user_id, 0),
            position=index + 1,
        )
        for index, e in enumerate(top)
    ]

    return LeaderboardOut(
        playtime=Playtime(top_three=top),
        sessions=SessionCounts(top_three=session_top),
        you=you,
    )


async def activity_overview(
    db: AsyncSession,
    workspace: Workspace,
    directory: DirectoryClient,
    now: datetime | None = None,
) -> ActivityOverview:
    """Active users plus every (rank-gated) member ranked by minutes."""
    now = now or utcnow()
    config = await get_activity_config(db, workspace.id)
    start = await aggregator.current_period_start(db, workspace.id)

    rank_ids = await _member_rank_ids(db, workspace.id)
    totals = await aggregator.effective_ms_by_user(
        db, workspace.id, start, now, config.idle_time_enabled, user_ids=list(rank_ids)
    )

    rank_map = None
    if config.leaderboard_rank is not None:
        rank_map = await load_rank_map(directory, workspace.id)

    staff_totals = {
        user_id: totals.get(user_id, 0)
        for user_id, rank_id in rank_ids.items()
        if passes_rank_gate(rank_id, rank_map, config.leaderboard_rank)
    }

    active = await list_active_sessions(db, workspace.id)
    names = await aggregator.usernames(db, set(staff_totals) | {s.user_id for s in active})

    seen: set[int] = set()
    active_users = []
    for session in active:
        if session.user_id in seen:
            continue
        seen.add(session.user_id)
        active_users.append(
            ActiveUser(
                user_id=session.user_id,
                username=names.get(session.user_id),
                start_time=session.start_time,
            )
        )

    staff = [
        StaffEntry(
            user_id=user_id,
            username=names.get(user_id),
            minutes=aggregator.ms_to_minutes(ms),
            position=index + 1,
        )
        for index, (user_id, ms) in enumerate(aggregator.rank_totals(staff_totals, names))
    ]
    return ActivityOverview(period_start=start, active_users=active_users, staff=staff)


# ── Cached views ────────────────────────────────────────────

class ActivityViews:
    """Stale-while-revalidate reads of the staff overview and leaderboard.

    One instance lives on ``app.state.views``.  Loaders open their own
    session from `session_factory` so a background refresh outlives the
    request that triggered it.  Cached values are JSON-ready dicts.
    """

    def __init__(
        self,
        ttl: int | None = None,
        stale: int | None = None,
        backend=None,
        clock: Callable[[], float] = time.time,
    ):
        self.overview_cache = ReadCache("activity_overview", ttl, stale, backend, clock)
        self.leaderboard_cache = ReadCache("leaderboard", ttl, stale, backend, clock)

    async def overview(
        self,
        session_factory: async_sessionmaker,
        workspace_id: int,
        directory: DirectoryClient,
    ) -> dict:
        async def _load():
            async with session_factory() as db:
                workspace = await db.get(Workspace, workspace_id)
                result = await activity_overview(db, workspace, directory)
                return result.model_dump(mode="json")

        return await self.overview_cache.get_or_load(f"{workspace_id}:staff", _load)

    async def leaderboard(
        self,
        session_factory: async_sessionmaker,
        workspace_id: int,
        directory: DirectoryClient,
        viewer_id: int | None = None,
    ) -> dict:
        async def _load():
            async with session_factory() as db:
                workspace = await db.get(Workspace, workspace_id)
                result = await build_leaderboard(db, workspace, directory, viewer_id=viewer_id)
                return result.model_dump(mode="json")

        return await self.leaderboard_cache.get_or_load(
            f"{workspace_id}:{viewer_id or '-'}", _load
        )

    async def invalidate(self, workspace_id: int | None = None) -> None:
        """Drop one workspace's views, or every view when workspace_id is None."""
        key = f"{workspace_id}:" if workspace_id is not None else None
        await self.overview_cache.invalidate(key)
        await self.leaderboard_cache.invalidate(key)

    async def wait_for_refreshes(self) -> None:
        await self.overview_cache.wait_for_refreshes()
        await self.leaderboard_cache.wait_for_refreshes()


def get_views(request: Request) -> ActivityViews:
    return request.app.state.views
