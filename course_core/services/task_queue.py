"""Background task queue using Redis lists.

Work that does not have to finish inside a request, such as evaluating
achievements after a course completion, is pushed onto a queue and
picked up by the worker process (python -m course_core.worker).

  Producer (API):    LPUSH task onto a Redis list → returns immediately
  Consumer (Worker): BRPOP from the list → processes task → loops

LPUSH at the head plus BRPOP at the tail gives FIFO order.  BRPOP blocks
until a task arrives, so an idle worker costs nothing.

Delivery is AT-MOST-ONCE: a worker that crashes mid-task loses it.
Achievement checks are best-effort by contract, so that is acceptable
here; anything that must not be lost belongs in the ledger write itself.
"""

from __future__ import annotations

import datetime
import json
import uuid
from collections import deque
from dataclasses import asdict, dataclass
from typing import Protocol, runtime_checkable

from course_core.db.redis import redis_pool

def _utc_now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())

@dataclass(frozen=True, slots=True)
class Task:
    """A unit of background work.

    queue:       "achievement_check" today; one list per queue in Redis.
    payload:     JSON-serializable arguments for the queue's handler.
    enqueued_at: epoch seconds, so the worker can log how stale a task is.
    """

    id: str
    queue: str
    payload: dict
    enqueued_at: int = 0

    @staticmethod
    def new(queue: str, payload: dict) -> Task:
        return Task(
            id=str(uuid.uuid4()), queue=queue, payload=payload, enqueued_at=_utc_now()
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @staticmethod
    def from_json(raw: str) -> Task:
        data = json.loads(raw)
        return Task(
            id=data["id"],
            queue=data["queue"],
            payload=data.get("payload") or {},
            enqueued_at=data.get("enqueued_at", 0),
        )

@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, queue: str, payload: dict) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def queue_length(self, queue: str) -> int: ...

class InMemoryTaskQueue:
    """Process-local queue used when REDIS_URL is unset.

    The API and the worker only share it when they run in one process,
    which is the test setup; tests drive worker.process_one() directly.
    """

    def __init__(self) -> None:
        self._queues: dict[str, deque[Task]] = {}

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task.new(queue, payload)
        self._queues.setdefault(queue, deque()).append(task)
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        tasks = self._queues.get(queue)
        return tasks.popleft() if tasks else None

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, ()))

class RedisTaskQueue:
    """LPUSH to enqueue, BRPOP to dequeue, one list per queue."""

    _PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task.new(queue, payload)
        await self._redis.lpush(f"{self._PREFIX}{queue}", task.to_json())
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        result = await self._redis.brpop(f"{self._PREFIX}{queue}", timeout=timeout)
        if result is None:
            return None
        _, raw = result
        return Task.from_json(raw)

    async def queue_length(self, queue: str) -> int:
        return await self._redis.llen(f"{self._PREFIX}{queue}")

# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    task_queue: TaskQueue = RedisTaskQueue(redis_pool)
else:
    task_queue = InMemoryTaskQueue()
