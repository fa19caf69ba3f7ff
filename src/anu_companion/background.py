from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

from loguru import logger


class BackgroundTasks:
    """Owns detached tasks so they are not garbage-collected mid-flight.

    Each task gets its own error boundary: a failure is logged and never
    propagates to whoever scheduled it.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task | None:
        if self._closed:
            coro.close()
            logger.warning(f"Background task {name} rejected: runner closed")
            return None
        task = asyncio.create_task(self._guarded(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(f"Background task scheduled: {name}")
        return task

    async def drain(self) -> None:
        """Wait for everything scheduled so far, including tasks scheduled while draining."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        await self.drain()

    async def _guarded(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.info(f"Background task cancelled: {name}")
            raise
        except Exception as ex:
            logger.error(f"Background task {name} failed: {type(ex).__name__}: {ex}")
