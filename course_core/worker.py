"""Background worker process.

RUN:  python -m course_core.worker

Same image as the API, different command:
  api:    uvicorn course_core.main:app --host 0.0.0.0 --port 8000
  worker: python -m course_core.worker

The ledger enqueues an achievement check after every accepted
completion; this process drains the queue.  A failed task is logged and
dropped, matching the best-effort contract of the side effect that
produced it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

from course_core.core.config import SETTINGS
from course_core.core.logging import setup_logging
from course_core.core.metrics import QUEUE_DEPTH
from course_core.services.achievements import (
    ACHIEVEMENT_QUEUE,
    AchievementTracker,
    stats_from_payload,
)
from course_core.services.task_queue import task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("worker")

HANDLERS: dict[str, TaskHandler] = {}

achievement_tracker = AchievementTracker()


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


@register_handler(ACHIEVEMENT_QUEUE)
async def handle_achievement_check(payload: dict) -> None:
    tenant_id = payload["tenant_id"]
    user_id = payload["user_id"]
    delta = stats_from_payload(payload.get("stats_delta") or {})
    unlocked = await achievement_tracker.check_and_unlock(tenant_id, user_id, delta)
    logger.info(
        "Achievement check for user=%s unlocked=%s",
        user_id,
        [a.achievement_id for a in unlocked],
        extra={"tenant_id": tenant_id, "user_id": user_id},
    )


async def process_one(queue_name: str, timeout: int = 1) -> bool:
    """Dequeue and handle at most one task.  Returns False if the queue was empty."""
    task = await task_queue.dequeue(queue_name, timeout=timeout)
    QUEUE_DEPTH.labels(queue_name=queue_name).set(
        await task_queue.queue_length(queue_name)
    )
    if task is None:
        return False

    age = max(0, int(time.time()) - task.enqueued_at) if task.enqueued_at else 0
    try:
        await HANDLERS[queue_name](task.payload)
        logger.info("Task %s on [%s] completed age=%ds", task.id, queue_name, age)
    except Exception:
        logger.exception("Task %s on [%s] failed age=%ds", task.id, queue_name, age)
    return True


async def run_worker() -> None:
    queues = list(HANDLERS)
    logger.info("Worker started, listening on queues: %s", queues)
    while True:
        for queue_name in queues:
            if not await process_one(queue_name):
                # In-memory queues return immediately; Redis BRPOP already waited.
                await asyncio.sleep(0.1)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
