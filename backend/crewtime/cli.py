"""Management CLI.

Usage:
    python -m crewtime.cli assign-batches   # Give every workspace a batch_id
    python -m crewtime.cli run-resets       # Run one reset tick now (all workspaces)
    python -m crewtime.cli batch            # Show the batch active right now
"""

import asyncio
import logging
import sys

from crewtime.database import async_session
from crewtime.services.batch_scheduler import backfill_batch_ids, get_current_batch
from crewtime.services.reset import run_scheduled_resets


async def assign_batches():
    async with async_session() as db:
        assigned = await backfill_batch_ids(db)
    print(f"Assigned batch ids to {assigned} workspace(s)")


async def run_resets():
    processed, results = await run_scheduled_resets(async_session)
    for r in results:
        state = "OK" if r["success"] else f"FAILED: {r.get('error')}"
        print(f"  {r['workspace_name']}: {state}")
    print(f"\nProcessed {processed} workspace(s), {len(results)} reset(s) attempted")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "assign-batches":
        asyncio.run(assign_batches())
    elif cmd == "run-resets":
        asyncio.run(run_resets())
    elif cmd == "batch":
        print(f"Active batch: {get_current_batch()}")
    else:
        print("Usage: python -m crewtime.cli [assign-batches|run-resets|batch]")
