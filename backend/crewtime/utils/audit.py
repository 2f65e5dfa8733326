"""Lightweight helper for recording audit log entries.

Usage:
    await log_audit(
        db, workspace_id=ws.id, user_id=actor.user_id,
        action="activity.quota.complete", entity=f"quota:{quota.id}",
        details={"target_user": actor.user_id},
    )

Called after the audited mutation has been committed.  A failed audit
write is logged and rolled back on its own; it never undoes the
mutation and never reaches the caller.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crewtime.models.audit_log import AuditLog

logger = logging.getLogger("crewtime.audit")


async def log_audit(
    db: AsyncSession,
    *,
    workspace_id: int,
    user_id: int | None,
    action: str,
    entity: str | None = None,
    details: dict | None = None,
) -> None:
    """Append and commit an audit entry; failures are logged only."""
    try:
        db.add(
            AuditLog(
                workspace_id=workspace_id,
                user_id=user_id,
                action=action,
                entity=entity,
                details=details,
            )
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(
            "Failed to write audit entry %s",
            action,
            extra={"workspace_id": workspace_id, "user_id": user_id},
        )
