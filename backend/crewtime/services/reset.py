"""Period reset and archival.

Decision (pure, `decide_reset`), evaluated per workspace per cron tick:

    no schedule / disabled           → skip  (no_schedule)
    schedule day != today (UTC)      → skip  (not_due_today)
    automatic reset already today    → skip  (already_reset_today)
    frequency threshold not reached  → skip  (frequency_not_elapsed)
    otherwise                        → execute

Thresholds count calendar days between today and the UTC date of the
last automatic reset (reset_by_id IS NULL): weekly 7, biweekly 14,
monthly 28.  A workspace that was never automatically reset executes on
its first due day.

Execution (`perform_reset`) is one transaction:
    1. period_start = earliest non-archived session start / adjustment,
       or now; period_end = now
    2. per-member statistics and quota snapshot over the window
    3. ActivityHistory row per member with activity or ≥1 quota
    4. ActivityReset row (unique per workspace and UTC date when automatic)
    5. archive sessions, adjustments, participations, past scheduled
       sessions and quota completions

`recover_partial_reset` finishes step 5 for a reset whose history was
written but whose source rows were left unarchived.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crewtime.auth.permissions import RESET_ACTIVITY, Actor
from crewtime.database import async_session
from crewtime.middleware.exceptions import PermissionDeniedError
from crewtime.models.activity import (
    ActivityAdjustment,
    ActivityHistory,
    ActivityReset,
    ActivitySession,
)
from crewtime.models.member import WorkspaceMember
from crewtime.models.quota import UserQuotaCompletion
from crewtime.models.schedule import ScheduledSession, SessionParticipant
from crewtime.models.workspace import Workspace
from crewtime.schemas.config import WEEKDAYS, ResetSchedule
from crewtime.services import aggregator, quota_evaluator
from crewtime.services.aggregator import MemberStats
from crewtime.services.cron import fan_out, list_workspaces
from crewtime.services.notifications import Notifier
from crewtime.services.workspace_config import get_activity_config, get_reset_schedule
from crewtime.utils.audit import log_audit
from crewtime.utils.clock import start_of_utc_day, utcnow

logger = logging.getLogger("crewtime.reset")

FREQUENCY_DAYS = {"weekly": 7, "biweekly": 14, "monthly": 28}


# ── Decision ────────────────────────────────────────────────

@dataclass(frozen=True)
class ResetDecision:
    execute: bool
    reason: str


def decide_reset(
    schedule: ResetSchedule | None,
    now: datetime,
    last_automatic_reset_at: datetime | None,
) -> ResetDecision:
    if schedule is None or not schedule.enabled or schedule.day is None:
        return ResetDecision(False, "no_schedule")
    if schedule.day != WEEKDAYS[now.weekday()]:
        return ResetDecision(False, "not_due_today")
    if last_automatic_reset_at is None:
        return ResetDecision(True, "due")
    if last_automatic_reset_at >= start_of_utc_day(now):
        return ResetDecision(False, "already_reset_today")

    days_since = (now.date() - last_automatic_reset_at.date()).days
    if days_since < FREQUENCY_DAYS[schedule.frequency]:
        return ResetDecision(False, "frequency_not_elapsed")
    return ResetDecision(True, "due")


async def last_automatic_reset_at(db: AsyncSession, workspace_id: int) -> datetime | None:
    result = await db.execute(
        select(func.max(ActivityReset.reset_at)).where(
            ActivityReset.workspace_id == workspace_id,
            ActivityReset.reset_by_id.is_(None),
        )
    )
    return result.scalar_one_or_none()


async def latest_reset(db: AsyncSession, workspace_id: int) -> ActivityReset | None:
    result = await db.execute(
        select(ActivityReset)
        .where(ActivityReset.workspace_id == workspace_id)
        .order_by(ActivityReset.reset_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


# ── Execution ───────────────────────────────────────────────

@dataclass
class ResetOutcome:
    reset: ActivityReset
    period_start: datetime
    period_end: datetime
    history_rows: int


async def _period_start(db: AsyncSession, workspace_id: int, now: datetime) -> datetime:
    earliest_session = await db.execute(
        select(func.min(ActivitySession.start_time)).where(
            ActivitySession.workspace_id == workspace_id,
            ActivitySession.archived == False,  # noqa: E712
        )
    )
    earliest_adjustment = await db.execute(
        select(func.min(ActivityAdjustment.created_at)).where(
            ActivityAdjustment.workspace_id == workspace_id,
            ActivityAdjustment.archived == False,  # noqa: E712
        )
    )
    candidates = [
        moment
        for moment in (earliest_session.scalar_one_or_none(), earliest_adjustment.scalar_one_or_none())
        if moment is not None
    ]
    return min(candidates) if candidates else now


def _snapshot_progress(evaluated) -> dict:
    snapshot = {}
    for quota, progress in evaluated:
        snapshot[quota.id] = {
            "name": quota.name,
            "type": quota.type,
            **progress.model_dump(mode="json"),
        }
    return snapshot


async def archive_rows(
    db: AsyncSession,
    workspace_id: int,
    period_start: datetime,
    period_end: datetime,
    cutoff: datetime,
) -> int:
    """Flag every non-archived source row dated at or before `cutoff`."""
    stamp = {
        "archived": True,
        "archive_start_date": period_start,
        "archive_end_date": period_end,
    }
    archived = 0

    statements = [
        update(ActivitySession).where(
            ActivitySession.workspace_id == workspace_id,
            ActivitySession.archived == False,  # noqa: E712
            ActivitySession.start_time <= cutoff,
        ),
        update(ActivityAdjustment).where(
            ActivityAdjustment.workspace_id == workspace_id,
            ActivityAdjustment.archived == False,  # noqa: E712
            ActivityAdjustment.created_at <= cutoff,
        ),
        update(SessionParticipant).where(
            SessionParticipant.archived == False,  # noqa: E712
            SessionParticipant.session_id.in_(
                select(ScheduledSession.id).where(
                    ScheduledSession.workspace_id == workspace_id,
                    ScheduledSession.date <= cutoff,
                )
            ),
        ),
        update(ScheduledSession).where(
            ScheduledSession.workspace_id == workspace_id,
            ScheduledSession.archived == False,  # noqa: E712
            ScheduledSession.date <= cutoff,
        ),
        update(UserQuotaCompletion).where(
            UserQuotaCompletion.workspace_id == workspace_id,
            UserQuotaCompletion.archived == False,  # noqa: E712
            or_(
                UserQuotaCompletion.completed_at.is_(None),
                UserQuotaCompletion.completed_at <= cutoff,
            ),
        ),
    ]
    for stmt in statements:
        result = await db.execute(
            stmt.values(**stamp).execution_options(synchronize_session=False)
        )
        archived += result.rowcount or 0
    return archived


async def perform_reset(
    db: AsyncSession,
    workspace: Workspace,
    reset_by: int | None = None,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> ResetOutcome:
    """Snapshot the period into history and archive it, in one transaction."""
    now = now or utcnow()
    try:
        period_start = await _period_start(db, workspace.id, now)
        config = await get_activity_config(db, workspace.id)

        member_ids = (
            await db.execute(
                select(WorkspaceMember.user_id).where(WorkspaceMember.workspace_id == workspace.id)
            )
        ).scalars().all()
        stats_map = await aggregator.member_period_stats(
            db, workspace.id, period_start, now, config.idle_time_enabled
        )

        history_rows = 0
        for user_id in member_ids:
            stats = stats_map.get(user_id, MemberStats())
            evaluated = await quota_evaluator.evaluate_quotas(db, workspace.id, user_id, stats)
            if not stats.has_activity and not evaluated:
                continue
            db.add(
                ActivityHistory(
                    user_id=user_id,
                    workspace_id=workspace.id,
                    period_start=period_start,
                    period_end=now,
                    minutes=stats.minutes,
                    messages=stats.messages,
                    sessions_hosted=stats.sessions_hosted(),
                    sessions_attended=stats.sessions_attended(),
                    idle_time=stats.idle_time,
                    wall_posts=stats.wall_posts,
                    quota_progress=_snapshot_progress(evaluated),
                )
            )
            history_rows += 1

        reset = ActivityReset(
            workspace_id=workspace.id,
            reset_at=now,
            previous_period_start=period_start,
            previous_period_end=now,
            reset_by_id=reset_by,
            auto_reset_date=now.date() if reset_by is None else None,
        )
        db.add(reset)
        await db.flush()

        await archive_rows(db, workspace.id, period_start, now, cutoff=now)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Reset workspace %s: %d history rows, period %s → %s",
        workspace.id, history_rows, period_start.isoformat(), now.isoformat(),
        extra={"workspace_id": workspace.id, "reset_by": reset_by},
    )
    if notifier is not None:
        notifier.emit(
            "reset_performed",
            workspace.id,
            {
                "reset_id": reset.id,
                "reset_by": reset_by,
                "period_start": period_start.isoformat(),
                "period_end": now.isoformat(),
                "history_rows": history_rows,
            },
        )
    return ResetOutcome(reset, period_start, now, history_rows)


async def recover_partial_reset(db: AsyncSession, workspace: Workspace) -> int:
    """Archive rows left behind by an interrupted reset.

    The mid-state is: a reset exists, yet non-archived ledger rows are
    dated at or before its previous_period_end.  Returns rows archived.
    """
    last = await latest_reset(db, workspace.id)
    if last is None:
        return 0

    leftover = await db.execute(
        select(func.count(ActivitySession.id)).where(
            ActivitySession.workspace_id == workspace.id,
            ActivitySession.archived == False,  # noqa: E712
            ActivitySession.start_time <= last.previous_period_end,
        )
    )
    leftover_adj = await db.execute(
        select(func.count(ActivityAdjustment.id)).where(
            ActivityAdjustment.workspace_id == workspace.id,
            ActivityAdjustment.archived == False,  # noqa: E712
            ActivityAdjustment.created_at <= last.previous_period_end,
        )
    )
    if not (leftover.scalar_one() or leftover_adj.scalar_one()):
        return 0

    archived = await archive_rows(
        db,
        workspace.id,
        last.previous_period_start,
        last.previous_period_end,
        cutoff=last.previous_period_end,
    )
    await db.commit()
    logger.warning(
        "Recovered partial reset %s for workspace %s: archived %d rows",
        last.id, workspace.id, archived,
    )
    return archived


async def manual_reset(
    db: AsyncSession,
    workspace: Workspace,
    actor: Actor,
    notifier: Notifier | None = None,
) -> ResetOutcome:
    if not actor.can(RESET_ACTIVITY):
        raise PermissionDeniedError(f"Missing permissions: {RESET_ACTIVITY}")

    outcome = await perform_reset(db, workspace, reset_by=actor.user_id, notifier=notifier)
    await log_audit(
        db,
        workspace_id=workspace.id,
        user_id=actor.user_id,
        action="activity.reset",
        entity=f"workspace:{workspace.id}",
        details={
            "reset_id": outcome.reset.id,
            "period_start": outcome.period_start.isoformat(),
            "period_end": outcome.period_end.isoformat(),
            "history_rows": outcome.history_rows,
        },
    )
    return outcome


# ── Cron fan-out ────────────────────────────────────────────

def _workspace_label(workspace_id: int, name: str | None) -> str:
    return name or f"Workspace {workspace_id}"


async def reset_workspace_if_due(
    session_factory: async_sessionmaker,
    workspace_id: int,
    workspace_name: str | None,
    now: datetime,
    notifier: Notifier | None = None,
) -> dict | None:
    """Run one workspace's tick in its own session.

    The decision is taken while holding a row lock on the workspace, so
    overlapping ticks see each other's reset.  The unique automatic reset
    date catches any overlap the lock cannot (SQLite).

    Returns a result dict when a reset was attempted, None when skipped.
    """
    try:
        async with session_factory() as db:
            workspace = await db.get(Workspace, workspace_id)
            await recover_partial_reset(db, workspace)

            await db.execute(
                select(Workspace.id).where(Workspace.id == workspace_id).with_for_update()
            )
            schedule = await get_reset_schedule(db, workspace_id)
            last_auto = await last_automatic_reset_at(db, workspace_id)
            decision = decide_reset(schedule, now, last_auto)
            if not decision.execute:
                logger.debug("Workspace %s skipped: %s", workspace_id, decision.reason)
                return None

            await perform_reset(db, workspace, now=now, notifier=notifier)
    except IntegrityError:
        logger.info(
            "Workspace %s skipped: already_reset_today (concurrent tick)", workspace_id
        )
        return None
    except Exception as e:
        logger.exception("Scheduled reset failed for workspace %s", workspace_id)
        return {
            "workspace_id": workspace_id,
            "workspace_name": _workspace_label(workspace_id, workspace_name),
            "success": False,
            "error": str(e),
        }

    return {
        "workspace_id": workspace_id,
        "workspace_name": _workspace_label(workspace_id, workspace_name),
        "success": True,
    }


async def run_scheduled_resets(
    session_factory: async_sessionmaker = async_session,
    now: datetime | None = None,
    batch_id: int | None = None,
    notifier: Notifier | None = None,
    sequential: bool | None = None,
    delay_seconds: float | None = None,
) -> tuple[int, list[dict]]:
    """Evaluate every workspace (in `batch_id` when given).

    Returns (workspaces processed, results of attempted resets).  A
    failure in one workspace is recorded and never stops the others.
    """
    now = now or utcnow()
    workspaces = await list_workspaces(session_factory, batch_id)
    logger.info("Reset tick: %d workspaces (batch=%s)", len(workspaces), batch_id)

    async def _worker(item):
        workspace_id, name = item
        return await reset_workspace_if_due(session_factory, workspace_id, name, now, notifier)

    outcomes = await fan_out(
        workspaces, _worker, sequential=sequential, delay_seconds=delay_seconds
    )
    results = [r for r in outcomes if r is not None]
    logger.info(
        "Reset tick complete: %d attempted, %d succeeded",
        len(results), sum(1 for r in results if r["success"]),
    )
    return len(workspaces), results
