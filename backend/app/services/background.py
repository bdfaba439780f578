"""
Fire-and-forget task spawning.

HTTP handlers return immediately while the work continues in the
background. Handles are kept only so the event loop does not drop them
and so the number of in-flight tasks can be reported; nothing cancels
them.
"""
import asyncio
import logging
from typing import Coroutine

logger = logging.getLogger(__name__)

_background_tasks: set[asyncio.Task] = set()


def spawn(coro: Coroutine, name: str | None = None) -> asyncio.Task:
    """Start ``coro`` as a background task and retain its handle until done."""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_done)
    return task


def _on_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        # Tasks carry their own error boundary; anything here escaped it
        logger.error(f"Background task {task.get_name()} failed: {exc!r}")


def in_flight() -> int:
    return len(_background_tasks)
