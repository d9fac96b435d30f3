"""
Fire-and-forget work that must not hold up a response.

``spawn`` schedules a coroutine on its own task.  The task is not a child
of the request: cancelling the request (client disconnect, request
timeout) leaves it running, and it is bounded by its own timeout instead.
Its outcome is only ever logged; the caller cannot observe a failure.
"""
import asyncio
import logging
from collections.abc import Coroutine

logger = logging.getLogger(__name__)


class DetachedTasks:
    def __init__(self) -> None:
        # The event loop keeps only weak references to tasks.
        self._tasks: set[asyncio.Task] = set()
        self._keys: dict[asyncio.Task, str] = {}

    def spawn(
        self,
        coro: Coroutine,
        *,
        timeout: float,
        description: str,
        key: str | None = None,
    ) -> asyncio.Task:
        """
        Schedule *coro* detached from the caller.  *key* names the cache
        entry the task writes so ``settle`` can wait for it.
        """
        task = asyncio.create_task(self._run(coro, timeout, description))
        self._tasks.add(task)
        if key is not None:
            self._keys[task] = key
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._keys.pop(task, None)

    @staticmethod
    async def _run(coro: Coroutine, timeout: float, description: str) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %.1fs", description, timeout)
        except Exception as exc:
            logger.warning("%s failed: %s", description, exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def settle(self, key: str) -> None:
        """Wait for the tasks still writing *key*."""
        tasks = [task for task, task_key in self._keys.items() if task_key == key]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def drain(self) -> None:
        """Wait for every task in flight (shutdown, tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


detached = DetachedTasks()
