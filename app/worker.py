"""Background worker process.

RUN:  python -m app.worker

Same image as the API, different command:

  api:    uvicorn app.main:app --host 0.0.0.0 --port 8000
  worker: python -m app.worker

The worker polls the ``email`` and ``maintenance`` queues and dispatches
each task on its name to a handler registered with ``@register_handler``.
Alongside the loop it runs the scheduler that enqueues the trial sweep
every day at 09:00 UTC.  Several workers may enqueue the same sweep; the
sweep's own lock lets only one of them do the work.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime, time, timedelta
from typing import Any

from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.db.engine import lifespan_db
from app.db.redis import lifespan_redis
from app.services.email_service import SEND_EMAIL_TASK, deliver, render
from app.services.task_queue import EMAIL_QUEUE, MAINTENANCE_QUEUE, Task, task_queue
from app.services.trial_sweep import run_trial_sweep

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("worker")

QUEUES = (EMAIL_QUEUE, MAINTENANCE_QUEUE)
TRIAL_SWEEP_TASK = "trial_sweep"
SWEEP_TIME = time(9, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(name: str):
    """Decorator: register a coroutine as the handler for a task name."""

    def decorator(func):
        HANDLERS[name] = func
        return func

    return decorator


# ---------------------------------------------------------------------------
# Task handlers
# ---------------------------------------------------------------------------


@register_handler(SEND_EMAIL_TASK)
async def handle_send_email(payload: dict) -> None:
    """Render and deliver one queued email.

    SMTP failures are logged and dropped; a lost notification must not
    stop the queue.
    """
    message = render(payload["template"], payload["to"], payload.get("context") or {})
    try:
        await asyncio.to_thread(deliver, message)
    except (smtplib.SMTPException, OSError):
        logger.exception(
            "Email delivery failed template=%s to=%s", payload["template"], payload["to"]
        )


@register_handler(TRIAL_SWEEP_TASK)
async def handle_trial_sweep(payload: dict) -> None:
    result = await run_trial_sweep()
    if result.skipped:
        logger.info("Trial sweep skipped: another run holds the lock")


# ---------------------------------------------------------------------------
# Dispatch and scheduling
# ---------------------------------------------------------------------------


async def process(task: Task) -> bool:
    """Run one task.  Returns False if it failed or had no handler."""
    handler = HANDLERS.get(task.name)
    if handler is None:
        logger.error("No handler for task %s (%s) on [%s]", task.id, task.name, task.queue)
        return False
    try:
        await handler(task.payload)
    except Exception:
        logger.exception("Task %s (%s) on [%s] failed", task.id, task.name, task.queue)
        return False
    logger.info("Task %s (%s) on [%s] completed", task.id, task.name, task.queue)
    return True


def next_sweep_at(now: datetime) -> datetime:
    """The next 09:00 UTC strictly after *now*."""
    now = now.astimezone(UTC)
    candidate = datetime.combine(now.date(), SWEEP_TIME)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


async def schedule_trial_sweep() -> None:
    while True:
        run_at = next_sweep_at(datetime.now(UTC))
        delay = (run_at - datetime.now(UTC)).total_seconds()
        logger.info("Next trial sweep at %s", run_at.isoformat())
        await asyncio.sleep(max(delay, 0))
        await task_queue.enqueue(MAINTENANCE_QUEUE, TRIAL_SWEEP_TASK, {})


async def run_worker() -> None:
    """Poll the queues, dispatch tasks, and keep the daily sweep scheduled."""
    logger.info("Worker started, listening on queues: %s", list(QUEUES))
    scheduler = asyncio.create_task(schedule_trial_sweep())
    try:
        while True:
            idle = True
            for queue_name in QUEUES:
                task = await task_queue.dequeue(queue_name, timeout=1)
                if task is None:
                    continue
                idle = False
                await process(task)
            if idle and SETTINGS.redis_url is None:
                # the in-memory queue returns immediately
                await asyncio.sleep(1)
    finally:
        scheduler.cancel()


async def main() -> None:
    async with lifespan_db():
        async with lifespan_redis():
            await run_worker()


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(main())
