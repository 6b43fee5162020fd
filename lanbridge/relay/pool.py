"""
Session Pool

Runs one asyncio task per relay session.

With capacity 0 (the default) every session starts immediately, which
matches the legacy bridge: there is no admission control and a flood of
inbound packets means a flood of tasks. A positive capacity turns the pool
into a bounded one: at most `capacity` sessions run at once and the rest
wait for a slot. Callers see the same contract either way.
"""

import asyncio
import logging
from typing import Callable, Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class SessionPool:
    """Tracks and optionally bounds concurrently running sessions."""

    def __init__(self, capacity: int = 0, name: str = 'sessions'):
        if capacity < 0:
            raise ValueError(f"capacity must be >= 0, got {capacity}")

        self.capacity = capacity
        self.name = name
        self._semaphore: Optional[asyncio.Semaphore] = (
            asyncio.Semaphore(capacity) if capacity else None
        )
        self._tasks: Set[asyncio.Task] = set()

        # Statistics
        self.started = 0
        self.failed = 0
        self.peak = 0

    @property
    def active(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine,
              cleanup: Optional[Callable[[], None]] = None) -> asyncio.Task:
        """
        Schedule a session coroutine and return its task.

        `cleanup` runs if the session is cancelled, including while it is
        still waiting for a slot and its coroutine never started.
        """
        task = asyncio.create_task(self._run(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        if cleanup is not None:
            task.add_done_callback(lambda t: t.cancelled() and cleanup())

        self.started += 1
        self.peak = max(self.peak, len(self._tasks))
        return task

    async def _run(self, coro: Coroutine):
        try:
            if self._semaphore is None:
                await coro
            else:
                async with self._semaphore:
                    await coro
        except asyncio.CancelledError:
            # No-op if the session already started
            coro.close()
            raise
        except Exception as e:
            self.failed += 1
            logger.error(f"Unhandled error in {self.name} session: {e}", exc_info=True)

    async def join(self):
        """Wait for all currently running sessions to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self):
        """Cancel outstanding sessions and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.debug(f"Cancelled {len(tasks)} {self.name} session(s)")

    def get_stats(self) -> dict:
        return {
            'active': self.active,
            'started': self.started,
            'failed': self.failed,
            'peak': self.peak,
            'capacity': self.capacity or None,
        }
