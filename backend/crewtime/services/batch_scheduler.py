"""Clock-based batch partitioning for multi-replica cron execution.

Each UTC hour is split into two 30-minute halves, crossed with hour
parity, giving four labels:

    even hour, :00-:29 → 1      odd hour, :00-:29 → 3
    even hour, :30-:59 → 2      odd hour, :30-:59 → 4

Every workspace carries a persisted batch_id drawn once at random, so a
full two-hour cycle touches each workspace once.  Nothing is shared
between replicas; clock skew can make a workspace run zero or two times
in a window, which the idempotent reset and rank sync tolerate.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crewtime.config import settings
from crewtime.models.workspace import BATCH_COUNT, Workspace, assign_batch_id
from crewtime.utils.clock import utcnow

logger = logging.getLogger("crewtime.batch")


def get_current_batch(now: datetime | None = None) -> int:
    """Batch label (1..4) for a naive-UTC moment; defaults to the current time."""
    now = now or utcnow()
    return (now.hour % 2) * 2 + (now.minute // 30) + 1


def get_active_batch(now: datetime | None = None) -> int | None:
    """The batch to process this tick, or None when every workspace runs."""
    if not settings.multi_container:
        return None
    return get_current_batch(now)


def log_batch_schedule(now: datetime | None = None) -> None:
    now = now or utcnow()
    logger.info(
        "Batch schedule: time=%s active_batch=%s multi_container=%s",
        now.isoformat(),
        get_current_batch(now),
        settings.multi_container,
    )


async def backfill_batch_ids(db: AsyncSession) -> int:
    """Assign a batch to every workspace that has none (or an out-of-range one)."""
    result = await db.execute(select(Workspace))
    updated = 0
    for ws in result.scalars().all():
        if ws.batch_id is None or not 1 <= ws.batch_id <= BATCH_COUNT:
            ws.batch_id = assign_batch_id()
            updated += 1
    await db.commit()
    logger.info("Assigned batch ids to %d workspaces", updated)
    return updated
