"""Ownership of a component's background load task."""

import asyncio
from typing import Any, Coroutine, Optional, TypeVar

import structlog


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class TaskSlot:
    """
    Holds at most one running load for a component.

    Starting a new run cancels the previous one; whoever was waiting on
    the superseded run gets the result of its replacement instead, unless
    that caller was itself cancelled. close() cancels whatever is running (including a pending retry sleep)
    and refuses new runs.
    """

    def __init__(self, name: str):
        self._name = name
        self._task: Optional[asyncio.Task] = None
        # Tasks cancelled because a newer run took their place
        self._replaced: set[asyncio.Task] = set()
        self._closed = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self, coro: Coroutine[Any, Any, T]) -> T:
        if self._closed:
            coro.close()
            raise RuntimeError(f"{self._name} is closed")

        previous = self._task
        if previous is not None and not previous.done():
            logger.debug("task_superseded", owner=self._name)
            previous.cancel()
            self._replaced.add(previous)

        task = asyncio.ensure_future(coro)
        self._task = task
        try:
            return await task
        except asyncio.CancelledError:
            # The caller itself was cancelled; never swallow that
            if asyncio.current_task().cancelling():
                raise
            current = self._task
            if task in self._replaced and not self._closed and current is not task:
                return await asyncio.shield(current)
            raise
        finally:
            self._replaced.discard(task)

    async def close(self) -> None:
        self._closed = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            # Outcome already delivered to the caller of run()
            await asyncio.gather(task, return_exceptions=True)
