# taskengine/scheduler.py
"""
Scheduler pass over runnable tasks.

One call selects up to batch_size tasks that are assigned to the bot, not
awaiting review, pending or queued, and due (scheduled_for unset or in the
past), then executes each with triggered_by="scheduled". The periodic timer
that calls this lives outside the engine (cron, POST /scheduler/process).
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from taskengine.store import TaskStore

logger = logging.getLogger("taskengine.scheduler")


async def process_pending_tasks(
    service,
    store: TaskStore,
    batch_size: int = 10,
    max_concurrency: int = 1,
    now: Optional[datetime] = None
) -> Dict[str, int]:
    """
    Execute one batch of due tasks.

    Returns {"processed", "success", "failed"}. If the selection query fails
    the error is logged and zero counts are returned with an "error" key.
    """
    now = now or datetime.utcnow()

    try:
        tasks = await store.list_pending_tasks(now, batch_size)
    except Exception as e:
        logger.error(f"Failed to load pending tasks | error={e}")
        return {"processed": 0, "success": 0, "failed": 0, "error": str(e)}

    if not tasks:
        logger.debug("No pending tasks due")
        return {"processed": 0, "success": 0, "failed": 0}

    logger.info(f"Processing pending tasks | count={len(tasks)} | max_concurrency={max_concurrency}")

    if max_concurrency <= 1:
        results = [await service.execute_task(task.id, "scheduled") for task in tasks]
    else:
        semaphore = asyncio.Semaphore(max_concurrency)

        async def run(task_id: int):
            async with semaphore:
                return await service.execute_task(task_id, "scheduled")

        results = await asyncio.gather(*(run(task.id) for task in tasks))

    success = sum(1 for result in results if result.success)
    summary = {"processed": len(results), "success": success, "failed": len(results) - success}

    logger.info(
        f"Scheduler pass complete | processed={summary['processed']} | "
        f"success={summary['success']} | failed={summary['failed']}"
    )
    return summary
