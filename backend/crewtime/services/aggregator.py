"""Time aggregation over the session and adjustment ledgers.

Effective time for a user over a window [start, end]:

    Σ (end_time − start_time − idle_time)   closed, non-archived sessions
                                            whose start_time is in the window
  + Σ minutes                               non-archived adjustments whose
                                            created_at is in the window

Idle subtraction follows the workspace `activity.idle_time_enabled`
flag (default on).  A session whose idle exceeds its duration contributes
negative time; nothing is clamped.  Open sessions never count.

All arithmetic is done in integer milliseconds; conversion to minutes or
seconds happens at the edge (history rows, quotas, leaderboard).

The current period starts at the latest ActivityReset.reset_at, or at
PERIOD_EPOCH when the workspace has never been reset.
"""

import math
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crewtime.models.activity import ActivityAdjustment, ActivityReset, ActivitySession
from crewtime.models.member import User
from crewtime.models.schedule import AllyVisit, ScheduledSession, SessionParticipant, WallPost

PERIOD_EPOCH = datetime(2025, 1, 1)
MS_PER_MINUTE = 60_000
_ONE_MS = timedelta(milliseconds=1)


def session_effective_ms(session: ActivitySession, idle_enabled: bool = True) -> int:
    """Duration minus idle for one closed session.  May be negative."""
    duration = (session.end_time - session.start_time) // _ONE_MS
    idle = (session.idle_time or 0) * MS_PER_MINUTE if idle_enabled else 0
    return duration - idle


def ms_to_minutes(ms: int) -> int:
    """Nearest minute, halves rounded up (150s -> 3, -150s -> -2)."""
    return math.floor(ms / MS_PER_MINUTE + 0.5)


def ms_to_seconds(ms: int) -> int:
    return ms // 1000


async def current_period_start(db: AsyncSession, workspace_id: int) -> datetime:
    result = await db.execute(
        select(func.max(ActivityReset.reset_at)).where(
            ActivityReset.workspace_id == workspace_id
        )
    )
    return result.scalar_one_or_none() or PERIOD_EPOCH


# ── Ledger reads ────────────────────────────────────────────

async def closed_sessions(
    db: AsyncSession,
    workspace_id: int,
    start: datetime,
    end: datetime,
    user_ids: list[int] | None = None,
) -> list[ActivitySession]:
    stmt = select(ActivitySession).where(
        ActivitySession.workspace_id == workspace_id,
        ActivitySession.start_time >= start,
        ActivitySession.start_time <= end,
        ActivitySession.end_time.is_not(None),
        ActivitySession.archived == False,  # noqa: E712
    )
    if user_ids is not None:
        stmt = stmt.where(ActivitySession.user_id.in_(user_ids))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def window_adjustments(
    db: AsyncSession,
    workspace_id: int,
    start: datetime,
    end: datetime,
    user_ids: list[int] | None = None,
) -> list[ActivityAdjustment]:
    stmt = select(ActivityAdjustment).where(
        ActivityAdjustment.workspace_id == workspace_id,
        ActivityAdjustment.created_at >= start,
        ActivityAdjustment.created_at <= end,
        ActivityAdjustment.archived == False,  # noqa: E712
    )
    if user_ids is not None:
        stmt = stmt.where(ActivityAdjustment.user_id.in_(user_ids))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def effective_ms_by_user(
    db: AsyncSession,
    workspace_id: int,
    start: datetime,
    end: datetime,
    idle_enabled: bool = True,
    user_ids: list[int] | None = None,
) -> dict[int, int]:
    """Effective milliseconds for every user appearing in either ledger."""
    totals: dict[int, int] = defaultdict(int)
    for session in await closed_sessions(db, workspace_id, start, end, user_ids):
        totals[session.user_id] += session_effective_ms(session, idle_enabled)
    for adj in await window_adjustments(db, workspace_id, start, end, user_ids):
        totals[adj.user_id] += adj.minutes * MS_PER_MINUTE
    return dict(totals)


async def usernames(db: AsyncSession, user_ids) -> dict[int, str | None]:
    ids = list(user_ids)
    if not ids:
        return {}
    result = await db.execute(select(User.id, User.username).where(User.id.in_(ids)))
    return {row.id: row.username for row in result.all()}


def rank_totals(
    totals: dict[int, int], names: dict[int, str | None]
) -> list[tuple[int, int]]:
    """Sort (user_id, ms) descending by time; ties by username, then user id."""
    return sorted(
        totals.items(),
        key=lambda item: (-item[1], (names.get(item[0]) or "").lower(), item[0]),
    )


# ── Per-member period statistics ────────────────────────────

def _matches_type(session_type: str | None, wanted: str | None) -> bool:
    if wanted in (None, "", "all"):
        return True
    return session_type == wanted


@dataclass
class MemberStats:
    effective_ms: int = 0
    messages: int = 0
    idle_time: int = 0
    wall_posts: int = 0
    alliance_visits: int = 0
    # keyed by ScheduledSession.session_type (None = untyped)
    hosted_by_type: Counter = field(default_factory=Counter)
    attended_by_type: Counter = field(default_factory=Counter)

    @property
    def minutes(self) -> int:
        return ms_to_minutes(self.effective_ms)

    def sessions_hosted(self, session_type: str | None = None) -> int:
        return sum(n for t, n in self.hosted_by_type.items() if _matches_type(t, session_type))

    def sessions_attended(self, session_type: str | None = None) -> int:
        return sum(n for t, n in self.attended_by_type.items() if _matches_type(t, session_type))

    def sessions_logged(self, session_type: str | None = None) -> int:
        return self.sessions_hosted(session_type) + self.sessions_attended(session_type)

    @property
    def has_activity(self) -> bool:
        return bool(
            self.effective_ms
            or self.messages
            or self.wall_posts
            or self.alliance_visits
            or sum(self.hosted_by_type.values())
            or sum(self.attended_by_type.values())
        )


async def member_period_stats(
    db: AsyncSession,
    workspace_id: int,
    start: datetime,
    end: datetime,
    idle_enabled: bool = True,
    user_ids: list[int] | None = None,
) -> dict[int, MemberStats]:
    """Per-user statistics for the window.

    Hosted   = owned scheduled sessions + participations with a co-host role.
    Attended = other participations in sessions the user does not own.
    """
    stats: dict[int, MemberStats] = defaultdict(MemberStats)
    wanted = set(user_ids) if user_ids is not None else None

    def _want(user_id) -> bool:
        return user_id is not None and (wanted is None or user_id in wanted)

    # Ledgers
    for session in await closed_sessions(db, workspace_id, start, end, user_ids):
        s = stats[session.user_id]
        s.effective_ms += session_effective_ms(session, idle_enabled)
        s.messages += session.messages or 0
        s.idle_time += session.idle_time or 0
    for adj in await window_adjustments(db, workspace_id, start, end, user_ids):
        stats[adj.user_id].effective_ms += adj.minutes * MS_PER_MINUTE

    # Scheduled sessions
    scheduled_filter = (
        ScheduledSession.workspace_id == workspace_id,
        ScheduledSession.date >= start,
        ScheduledSession.date <= end,
        ScheduledSession.archived == False,  # noqa: E712
    )
    owned = await db.execute(
        select(ScheduledSession.owner_id, ScheduledSession.session_type).where(*scheduled_filter)
    )
    for owner_id, session_type in owned.all():
        if _want(owner_id):
            stats[owner_id].hosted_by_type[session_type] += 1

    participations = await db.execute(
        select(SessionParticipant, ScheduledSession.owner_id, ScheduledSession.session_type)
        .join(ScheduledSession, SessionParticipant.session_id == ScheduledSession.id)
        .where(*scheduled_filter, SessionParticipant.archived == False)  # noqa: E712
    )
    for participant, owner_id, session_type in participations.all():
        if not _want(participant.user_id):
            continue
        if participant.is_cohost:
            stats[participant.user_id].hosted_by_type[session_type] += 1
        elif participant.user_id != owner_id:
            stats[participant.user_id].attended_by_type[session_type] += 1

    # Wall posts
    posts = await db.execute(
        select(WallPost.author_id, func.count(WallPost.id))
        .where(
            WallPost.workspace_id == workspace_id,
            WallPost.created_at >= start,
            WallPost.created_at <= end,
        )
        .group_by(WallPost.author_id)
    )
    for author_id, count in posts.all():
        if _want(author_id):
            stats[author_id].wall_posts += count

    # Alliance visits (host or participant)
    visits = await db.execute(
        select(AllyVisit).where(
            AllyVisit.workspace_id == workspace_id,
            AllyVisit.time >= start,
            AllyVisit.time <= end,
        )
    )
    for visit in visits.scalars().all():
        present = {int(uid) for uid in (visit.participants or [])}
        if visit.host_id is not None:
            present.add(visit.host_id)
        for user_id in present:
            if _want(user_id):
                stats[user_id].alliance_visits += 1

    return dict(stats)
