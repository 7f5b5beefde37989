"""
Fire-and-forget task helper.

Usage-count increments and pool resets must never block or fail a dispatch,
so they run as detached asyncio tasks. References are held in a module-level
set until the task finishes so they are not garbage collected mid-flight.
"""

import asyncio
import logging
from typing import Any, Coroutine

logger = logging.getLogger(__name__)

_background_tasks: set[asyncio.Task] = set()


def _log_task_error(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(f"Background task {task.get_name()} failed: {exc}")


def fire_and_forget(coro: Coroutine[Any, Any, Any], name: str = "background") -> asyncio.Task:
    """Schedule ``coro`` without awaiting it; failures are only logged."""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_log_task_error)
    return task


def pending_count() -> int:
    return len(_background_tasks)


async def drain(timeout: float = 5.0) -> None:
    """Wait for outstanding background tasks (shutdown and tests)."""
    loop = asyncio.get_running_loop()
    tasks = [task for task in _background_tasks if task.get_loop() is loop]
    if not tasks:
        return
    await asyncio.wait(tasks, timeout=timeout)
