"""Typed access to the per-workspace key/value configuration."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crewtime.models.workspace import WorkspaceConfig
from crewtime.schemas.config import ActivityConfig, ResetSchedule

ACTIVITY_KEY = "activity"
RESET_SCHEDULE_KEY = "activity_reset_schedule"


async def get_config_value(db: AsyncSession, workspace_id: int, key: str) -> dict | None:
    result = await db.execute(
        select(WorkspaceConfig.value).where(
            WorkspaceConfig.workspace_id == workspace_id,
            WorkspaceConfig.key == key,
        )
    )
    return result.scalar_one_or_none()


async def set_config_value(
    db: AsyncSession, workspace_id: int, key: str, value: dict
) -> WorkspaceConfig:
    """Insert or replace one config key.  Flushes, does not commit."""
    result = await db.execute(
        select(WorkspaceConfig).where(
            WorkspaceConfig.workspace_id == workspace_id,
            WorkspaceConfig.key == key,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = WorkspaceConfig(workspace_id=workspace_id, key=key, value=value)
        db.add(row)
    else:
        row.value = value
    await db.flush()
    return row


async def get_activity_config(db: AsyncSession, workspace_id: int) -> ActivityConfig:
    raw = await get_config_value(db, workspace_id, ACTIVITY_KEY)
    return ActivityConfig.model_validate(raw or {})


async def get_reset_schedule(db: AsyncSession, workspace_id: int) -> ResetSchedule | None:
    raw = await get_config_value(db, workspace_id, RESET_SCHEDULE_KEY)
    if not raw:
        return None
    return ResetSchedule.model_validate(raw)
