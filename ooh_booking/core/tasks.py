"""Tracking for fire-and-forget asyncio tasks."""

import asyncio
import logging
from typing import Any, Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """
    Keeps references to detached tasks and logs their failures.

    The event loop only holds weak references to tasks, so anything spawned
    without being awaited must be kept somewhere until it finishes.
    """

    def __init__(self) -> None:
        self._tasks: Set["asyncio.Task[Any]"] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> "asyncio.Task[Any]":
        """
        Schedule a coroutine on the running loop.

        Args:
            coro: Coroutine to run
            name: Task name for debugging

        Returns:
            The created task
        """
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(self._handle_task_exception)
        return task

    @staticmethod
    def _handle_task_exception(task: "asyncio.Task[Any]") -> None:
        """
        Handle exceptions from background tasks.

        Args:
            task: The completed task to check for exceptions
        """
        try:
            exception = task.exception()
            if exception:
                logger.error(
                    f"Background task {task.get_name()} failed: {exception}", exc_info=exception
                )
        except asyncio.CancelledError:
            logger.debug(f"Background task {task.get_name()} was cancelled")

    def __len__(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every tracked task, including ones spawned while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
