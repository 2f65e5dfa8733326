"""Adjustment ledger - manual signed minute corrections.

Adjustments are append-only and only target existing workspace members.
They leave the current period only by being archived at reset.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crewtime.auth.permissions import MANAGE_ACTIVITY, Actor
from crewtime.middleware.exceptions import (
    PermissionDeniedError,
    ResourceNotFoundError,
    ValidationError,
)
from crewtime.models.activity import ActivityAdjustment
from crewtime.models.member import WorkspaceMember
from crewtime.utils.audit import log_audit

logger = logging.getLogger("crewtime.adjustments")


async def create_adjustment(
    db: AsyncSession,
    workspace_id: int,
    user_id: int,
    minutes: int,
    actor: Actor,
    reason: str | None = None,
) -> ActivityAdjustment:
    if not actor.can(MANAGE_ACTIVITY):
        raise PermissionDeniedError(f"Missing permissions: {MANAGE_ACTIVITY}")
    if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes == 0:
        raise ValidationError("minutes must be a non-zero integer")

    member = await db.execute(
        select(WorkspaceMember.id).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
    )
    if member.scalar_one_or_none() is None:
        raise ResourceNotFoundError("Workspace member", str(user_id))

    adjustment = ActivityAdjustment(
        user_id=user_id,
        workspace_id=workspace_id,
        actor_id=actor.user_id,
        minutes=minutes,
        reason=reason,
    )
    db.add(adjustment)
    await db.commit()

    logger.info(
        "Adjustment %+d min for user %s by %s", minutes, user_id, actor.user_id,
        extra={"workspace_id": workspace_id},
    )
    await log_audit(
        db,
        workspace_id=workspace_id,
        user_id=actor.user_id,
        action="activity.adjust",
        entity=f"user:{user_id}",
        details={"minutes": minutes, "reason": reason},
    )
    return adjustment


async def list_adjustments(
    db: AsyncSession, workspace_id: int, user_id: int | None = None
) -> list[ActivityAdjustment]:
    stmt = select(ActivityAdjustment).where(
        ActivityAdjustment.workspace_id == workspace_id,
        ActivityAdjustment.archived == False,  # noqa: E712
    )
    if user_id is not None:
        stmt = stmt.where(ActivityAdjustment.user_id == user_id)
    result = await db.execute(stmt.order_by(ActivityAdjustment.created_at.desc()))
    return list(result.scalars().all())
