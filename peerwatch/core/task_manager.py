"""
Background task lifecycle management for the membership subsystem.

Every long-running activity (actor loop, keep-alive listener, watcher,
poller, reconnection) is created through a ``TaskManager`` so that the
whole subsystem can be cancelled deterministically in tests and on
graceful shutdown.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

from loguru import logger


class TaskManager:
    """Tracks background tasks owned by one component."""

    def __init__(self, name: str = "TaskManager") -> None:
        self.name = name
        self.tasks: set[asyncio.Task[Any]] = set()
        self._shutdown_requested = False

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def create_task(
        self, coro: Coroutine[Any, Any, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a background task."""
        if self._shutdown_requested:
            coro.close()
            raise RuntimeError(f"[{self.name}] Cannot create tasks after shutdown")

        task = asyncio.create_task(coro, name=name)
        self.tasks.add(task)
        task.add_done_callback(self._task_completed)

        logger.debug(f"[{self.name}] Started task {task.get_name()}")
        return task

    def _task_completed(self, task: asyncio.Task[Any]) -> None:
        self.tasks.discard(task)

        if task.cancelled():
            logger.debug(f"[{self.name}] Task {task.get_name()} was cancelled")
        elif task.exception() is not None:
            logger.error(
                f"[{self.name}] Task {task.get_name()} failed: {task.exception()!r}"
            )
        else:
            logger.debug(f"[{self.name}] Task {task.get_name()} finished")

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel all tracked tasks and wait for them to unwind."""
        if self._shutdown_requested:
            return
        self._shutdown_requested = True

        current = asyncio.current_task()
        pending = [task for task in self.tasks if task is not current and not task.done()]
        if not pending:
            logger.debug(f"[{self.name}] No tasks to shut down")
            return

        logger.debug(f"[{self.name}] Cancelling {len(pending)} background tasks")
        for task in pending:
            task.cancel()

        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            logger.warning(
                f"[{self.name}] Task {task.get_name()} did not stop within {timeout}s"
            )

        self.tasks.clear()

    def __len__(self) -> int:
        return len(self.tasks)

    def __bool__(self) -> bool:
        return bool(self.tasks)
