"""Quota resolution, progress evaluation and custom-quota completion.

A member's quotas are the deduplicated union of quotas linked to any
role they hold (QuotaRole) or any department they sit in
(QuotaDepartment) within the workspace.

Progress is resolved once into a tagged union:
    MetricProgress{target, current}   mins, sessions_*, alliance_visits
    CustomProgress{completed, ...}    custom (from UserQuotaCompletion)

Completion workflow for custom quotas:
    complete    member marks their own user_complete quota done
    signoff     holder of signoff_custom_quotas marks a member's
                manager_signoff quota done
    uncomplete  revert; admins always, members only for their own
                user_complete quota, signoff holders for
                manager_signoff quotas

Each write upserts the (quota, user, workspace) row, then records an
audit entry whose failure never affects the write.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crewtime.auth.permissions import SIGNOFF_CUSTOM_QUOTAS, Actor
from crewtime.middleware.exceptions import (
    PermissionDeniedError,
    ResourceNotFoundError,
    ValidationError,
)
from crewtime.models.member import DepartmentMember, Role, RoleMember, WorkspaceMember
from crewtime.models.quota import Quota, QuotaDepartment, QuotaRole, UserQuotaCompletion
from crewtime.models.workspace import Workspace
from crewtime.schemas.quota import CustomProgress, MetricProgress, QuotaProgressOut
from crewtime.services import aggregator
from crewtime.services.aggregator import MemberStats
from crewtime.services.notifications import Notifier
from crewtime.services.workspace_config import get_activity_config
from crewtime.utils.audit import log_audit
from crewtime.utils.clock import utcnow

logger = logging.getLogger("crewtime.quotas")


# ── Resolution ──────────────────────────────────────────────

async def _member_link_ids(
    db: AsyncSession, workspace_id: int, user_id: int
) -> tuple[set[str], set[str]]:
    role_rows = await db.execute(
        select(RoleMember.role_id)
        .join(Role, Role.id == RoleMember.role_id)
        .where(Role.workspace_id == workspace_id, RoleMember.user_id == user_id)
    )
    dept_rows = await db.execute(
        select(DepartmentMember.department_id).where(
            DepartmentMember.workspace_id == workspace_id,
            DepartmentMember.user_id == user_id,
        )
    )
    return set(role_rows.scalars().all()), set(dept_rows.scalars().all())


async def resolve_member_quotas(
    db: AsyncSession, workspace_id: int, user_id: int
) -> list[Quota]:
    role_ids, dept_ids = await _member_link_ids(db, workspace_id, user_id)
    if not role_ids and not dept_ids:
        return []

    quota_ids: set[str] = set()
    if role_ids:
        rows = await db.execute(
            select(QuotaRole.quota_id).where(QuotaRole.role_id.in_(role_ids))
        )
        quota_ids.update(rows.scalars().all())
    if dept_ids:
        rows = await db.execute(
            select(QuotaDepartment.quota_id).where(QuotaDepartment.department_id.in_(dept_ids))
        )
        quota_ids.update(rows.scalars().all())
    if not quota_ids:
        return []

    result = await db.execute(
        select(Quota)
        .where(Quota.workspace_id == workspace_id, Quota.id.in_(quota_ids))
        .order_by(Quota.name, Quota.id)
    )
    return list(result.scalars().all())


async def is_quota_assigned(
    db: AsyncSession, quota: Quota, workspace_id: int, user_id: int
) -> bool:
    role_ids, dept_ids = await _member_link_ids(db, workspace_id, user_id)
    if role_ids:
        hit = await db.execute(
            select(QuotaRole.id)
            .where(QuotaRole.quota_id == quota.id, QuotaRole.role_id.in_(role_ids))
            .limit(1)
        )
        if hit.first() is not None:
            return True
    if dept_ids:
        hit = await db.execute(
            select(QuotaDepartment.id)
            .where(
                QuotaDepartment.quota_id == quota.id,
                QuotaDepartment.department_id.in_(dept_ids),
            )
            .limit(1)
        )
        if hit.first() is not None:
            return True
    return False


# ── Progress ────────────────────────────────────────────────

def metric_current(quota: Quota, stats: MemberStats) -> int:
    if quota.type == "mins":
        return stats.minutes
    if quota.type == "sessions_hosted":
        return stats.sessions_hosted(quota.session_type)
    if quota.type == "sessions_attended":
        return stats.sessions_attended(quota.session_type)
    if quota.type == "sessions_logged":
        return stats.sessions_logged(quota.session_type)
    if quota.type == "alliance_visits":
        return stats.alliance_visits
    raise ValueError(f"Not a metric quota type: {quota.type}")


def resolve_progress(
    quota: Quota,
    stats: MemberStats,
    completion: UserQuotaCompletion | None,
) -> MetricProgress | CustomProgress:
    if quota.type == "custom":
        if completion is None:
            return CustomProgress()
        return CustomProgress(
            completed=bool(completion.completed),
            completed_at=completion.completed_at,
            completed_by=completion.completed_by,
            notes=completion.notes,
        )
    return MetricProgress(target=quota.value or 0, current=metric_current(quota, stats))


def to_progress_out(quota: Quota, progress: MetricProgress | CustomProgress) -> QuotaProgressOut:
    return QuotaProgressOut(
        quota_id=quota.id,
        name=quota.name,
        type=quota.type,
        value=quota.value or 0,
        completion_type=quota.completion_type,
        session_type=quota.session_type,
        percentage=progress.percentage,
        completed=progress.completed,
        progress=progress,
    )


async def active_completions(
    db: AsyncSession, workspace_id: int, user_id: int, quota_ids: list[str]
) -> dict[str, UserQuotaCompletion]:
    if not quota_ids:
        return {}
    result = await db.execute(
        select(UserQuotaCompletion).where(
            UserQuotaCompletion.workspace_id == workspace_id,
            UserQuotaCompletion.user_id == user_id,
            UserQuotaCompletion.quota_id.in_(quota_ids),
            UserQuotaCompletion.archived == False,  # noqa: E712
        )
    )
    return {c.quota_id: c for c in result.scalars().all()}


async def evaluate_quotas(
    db: AsyncSession,
    workspace_id: int,
    user_id: int,
    stats: MemberStats,
) -> list[tuple[Quota, MetricProgress | CustomProgress]]:
    quotas = await resolve_member_quotas(db, workspace_id, user_id)
    completions = await active_completions(db, workspace_id, user_id, [q.id for q in quotas])
    return [(q, resolve_progress(q, stats, completions.get(q.id))) for q in quotas]


async def evaluate_member_quotas(
    db: AsyncSession, workspace: Workspace, user_id: int
) -> list[QuotaProgressOut]:
    """Progress for every quota assigned to the member, current period."""
    config = await get_activity_config(db, workspace.id)
    start = await aggregator.current_period_start(db, workspace.id)
    stats_map = await aggregator.member_period_stats(
        db, workspace.id, start, utcnow(), config.idle_time_enabled, user_ids=[user_id]
    )
    stats = stats_map.get(user_id, MemberStats())
    evaluated = await evaluate_quotas(db, workspace.id, user_id, stats)
    return [to_progress_out(q, p) for q, p in evaluated]


# ── Completion workflow ─────────────────────────────────────

async def _get_workspace_quota(db: AsyncSession, workspace_id: int, quota_id: str) -> Quota:
    quota = await db.get(Quota, quota_id)
    if quota is None or quota.workspace_id != workspace_id:
        raise ResourceNotFoundError("Quota", quota_id)
    return quota


async def _get_completion(
    db: AsyncSession, quota_id: str, user_id: int, workspace_id: int
) -> UserQuotaCompletion | None:
    result = await db.execute(
        select(UserQuotaCompletion).where(
            UserQuotaCompletion.quota_id == quota_id,
            UserQuotaCompletion.user_id == user_id,
            UserQuotaCompletion.workspace_id == workspace_id,
        )
    )
    return result.scalar_one_or_none()


async def _upsert_completion(
    db: AsyncSession,
    quota: Quota,
    user_id: int,
    workspace_id: int,
    *,
    completed: bool,
    completed_at: datetime | None,
    completed_by: int | None,
    notes: str | None,
) -> UserQuotaCompletion:
    completion = await _get_completion(db, quota.id, user_id, workspace_id)
    if completion is None:
        completion = UserQuotaCompletion(
            quota_id=quota.id, user_id=user_id, workspace_id=workspace_id
        )
        db.add(completion)
    completion.completed = completed
    completion.completed_at = completed_at
    completion.completed_by = completed_by
    completion.notes = notes
    # A completion written after a reset belongs to the new period
    completion.archived = False
    completion.archive_start_date = None
    completion.archive_end_date = None
    await db.commit()
    return completion


async def complete(
    db: AsyncSession,
    quota_id: str,
    actor: Actor,
    target_user_id: int | None = None,
    notes: str | None = None,
    notifier: Notifier | None = None,
) -> UserQuotaCompletion:
    """Member marks their own user_complete custom quota as done."""
    quota = await _get_workspace_quota(db, actor.workspace_id, quota_id)

    if quota.type != "custom":
        raise ValidationError("Only custom quotas can be manually completed")
    if quota.completion_type != "user_complete":
        raise ValidationError("This quota requires manager signoff")

    target = actor.user_id if target_user_id is None else target_user_id
    if target != actor.user_id:
        raise PermissionDeniedError("You can only complete your own quotas")
    if not await is_quota_assigned(db, quota, actor.workspace_id, actor.user_id):
        raise PermissionDeniedError("This quota is not assigned to you")

    completion = await _upsert_completion(
        db, quota, actor.user_id, actor.workspace_id,
        completed=True, completed_at=utcnow(), completed_by=actor.user_id, notes=notes,
    )
    logger.info("Quota %s completed by %s", quota.id, actor.user_id)

    await log_audit(
        db,
        workspace_id=actor.workspace_id,
        user_id=actor.user_id,
        action="activity.quota.complete",
        entity=f"quota:{quota.id}",
        details={"quota_name": quota.name, "user_id": actor.user_id, "notes": notes},
    )
    if notifier is not None:
        notifier.emit(
            "quota_completed",
            actor.workspace_id,
            {"quota_id": quota.id, "user_id": actor.user_id, "completed_by": actor.user_id},
        )
    return completion


async def signoff(
    db: AsyncSession,
    quota_id: str,
    target_user_id: int,
    signer: Actor,
    notes: str | None = None,
    notifier: Notifier | None = None,
) -> UserQuotaCompletion:
    """Manager signs off a member's manager_signoff custom quota."""
    if not signer.can(SIGNOFF_CUSTOM_QUOTAS):
        raise PermissionDeniedError(f"Missing permissions: {SIGNOFF_CUSTOM_QUOTAS}")

    quota = await _get_workspace_quota(db, signer.workspace_id, quota_id)
    if quota.type != "custom":
        raise ValidationError("Only custom quotas can be manually signed off")
    if quota.completion_type != "manager_signoff":
        raise ValidationError("This quota does not require manager signoff")

    member = await db.execute(
        select(WorkspaceMember.id).where(
            WorkspaceMember.workspace_id == signer.workspace_id,
            WorkspaceMember.user_id == target_user_id,
        )
    )
    if member.scalar_one_or_none() is None:
        raise ResourceNotFoundError("Workspace member", str(target_user_id))
    if not await is_quota_assigned(db, quota, signer.workspace_id, target_user_id):
        raise ValidationError("This quota is not assigned to the target user")

    completion = await _upsert_completion(
        db, quota, target_user_id, signer.workspace_id,
        completed=True, completed_at=utcnow(), completed_by=signer.user_id, notes=notes,
    )
    logger.info("Quota %s signed off for %s by %s", quota.id, target_user_id, signer.user_id)

    await log_audit(
        db,
        workspace_id=signer.workspace_id,
        user_id=signer.user_id,
        action="activity.quota.signoff",
        entity=f"quota:{quota.id}",
        details={"quota_name": quota.name, "target_user_id": target_user_id, "notes": notes},
    )
    if notifier is not None:
        notifier.emit(
            "quota_completed",
            signer.workspace_id,
            {"quota_id": quota.id, "user_id": target_user_id, "completed_by": signer.user_id},
        )
    return completion


def can_uncomplete(actor: Actor, quota: Quota, target_user_id: int) -> bool:
    if actor.is_admin:
        return True
    if quota.completion_type == "user_complete" and target_user_id == actor.user_id:
        return True
    if quota.completion_type == "manager_signoff":
        return actor.can(SIGNOFF_CUSTOM_QUOTAS)
    return False


async def uncomplete(
    db: AsyncSession,
    quota_id: str,
    actor: Actor,
    target_user_id: int | None = None,
) -> UserQuotaCompletion:
    """Revert a completion; the row is kept with its fields cleared."""
    target = actor.user_id if target_user_id is None else target_user_id
    quota = await _get_workspace_quota(db, actor.workspace_id, quota_id)

    completion = await _get_completion(db, quota.id, target, actor.workspace_id)
    if completion is None:
        raise ResourceNotFoundError("Completion record", f"{quota.id}/{target}")
    if not can_uncomplete(actor, quota, target):
        raise PermissionDeniedError("You do not have permission to uncomplete this quota")

    completion.completed = False
    completion.completed_at = None
    completion.completed_by = None
    completion.notes = None
    await db.commit()
    logger.info("Quota %s uncompleted for %s by %s", quota.id, target, actor.user_id)

    await log_audit(
        db,
        workspace_id=actor.workspace_id,
        user_id=actor.user_id,
        action="activity.quota.uncomplete",
        entity=f"quota:{quota.id}",
        details={"quota_name": quota.name, "target_user_id": target},
    )
    return completion
