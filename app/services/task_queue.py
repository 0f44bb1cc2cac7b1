"""Background task queue on Redis lists.

The API enqueues work it must not wait on (outgoing email) and the
worker's scheduler enqueues the daily trial sweep; ``app.worker`` consumes both.

  Producer (API):    LPUSH onto ``tasks:<queue>``
  Consumer (worker): BRPOP from the same list

LPUSH at the head and BRPOP at the tail gives FIFO order.  Delivery is
at-most-once: a task popped by a worker that then crashes is lost.
For email notifications that is acceptable.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from app.core.metrics import QUEUE_DEPTH
from app.db.redis import redis_pool

EMAIL_QUEUE = "email"
MAINTENANCE_QUEUE = "maintenance"


@dataclass(frozen=True, slots=True)
class Task:
    """A unit of background work.

    id:      Unique identifier for tracking and logging.
    queue:   Which queue this task belongs to ("email", "maintenance").
    name:    Handler name the worker dispatches on.
    payload: JSON-serializable arguments for the handler.
    """

    id: str
    queue: str
    name: str
    payload: dict


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, queue: str, name: str, payload: dict) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def queue_length(self, queue: str) -> int: ...


class InMemoryTaskQueue:
    """In-process queue used when REDIS_URL is unset (and in tests)."""

    def __init__(self) -> None:
        self._queues: dict[str, list[Task]] = {}

    async def enqueue(self, queue: str, name: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, name=name, payload=payload)
        self._queues.setdefault(queue, []).append(task)
        QUEUE_DEPTH.labels(queue_name=queue).set(len(self._queues[queue]))
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        tasks = self._queues.get(queue, [])
        if not tasks:
            return None
        task = tasks.pop(0)
        QUEUE_DEPTH.labels(queue_name=queue).set(len(tasks))
        return task

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, []))

    def pending(self, queue: str) -> list[Task]:
        return list(self._queues.get(queue, []))

    def clear(self) -> None:
        self._queues.clear()


class RedisTaskQueue:
    """Redis-backed task queue using LPUSH/BRPOP."""

    _PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def enqueue(self, queue: str, name: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, name=name, payload=payload)
        task_json = json.dumps(
            {"id": task.id, "queue": queue, "name": name, "payload": payload},
            default=str,
        )
        depth = await self._redis.lpush(f"{self._PREFIX}{queue}", task_json)
        QUEUE_DEPTH.labels(queue_name=queue).set(depth)
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        # Blocks up to `timeout` seconds; None on timeout.
        result = await self._redis.brpop(f"{self._PREFIX}{queue}", timeout=timeout)
        if result is None:
            return None
        _, task_json = result
        return Task(**json.loads(task_json))

    async def queue_length(self, queue: str) -> int:
        return await self._redis.llen(f"{self._PREFIX}{queue}")


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    task_queue: TaskQueue = RedisTaskQueue(redis_pool)
else:
    task_queue = InMemoryTaskQueue()
