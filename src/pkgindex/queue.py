"""Bounded-concurrency queue of fetches.

InMemoryQueue runs every scheduled item in its own asyncio task. A
semaphore with one slot per worker bounds how many run at once, and
:meth:`InMemoryQueue.schedule` waits for a free slot, so a caller that
schedules many items is slowed down to the rate at which they finish.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from pkgindex.config import DEFAULT_FETCH_TIMEOUT, DEFAULT_WORKERS, STATE_WRITE_GRACE
from pkgindex.errors import STATUS_INTERNAL_ERROR, ProxyTimedOut, to_status
from pkgindex.models import WorkItem
from pkgindex.persistence import Persistence

logger = logging.getLogger(__name__)

ProcessFunc = Callable[[str, str], Awaitable[tuple[int, Optional[Exception]]]]


class InMemoryQueue:
    """Runs fetches concurrently, at most ``workers`` at a time.

    Attributes:
        workers: Number of slots.
        timeout: Seconds a single item may run before it is cancelled.
        results: Status of every finished item, by task name.
    """

    def __init__(
        self,
        process: ProcessFunc,
        workers: int = DEFAULT_WORKERS,
        timeout: float = DEFAULT_FETCH_TIMEOUT + STATE_WRITE_GRACE,
    ) -> None:
        """Initialize the queue.

        Args:
            process: Coroutine function called with (module_path, version)
                for every item, usually Fetcher.fetch_and_update_state.
            workers: Number of items that may run at once.
            timeout: Seconds each item may run. It should leave room for
                the fetcher to time out and record the state on its own.
        """
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        self._process = process
        self.workers = workers
        self.timeout = timeout
        self.results: dict[str, int] = {}
        self._sem = asyncio.Semaphore(workers)
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    async def schedule(self, module_path: str, version: str, suffix: str = "") -> bool:
        """Schedule a fetch of module_path@version.

        Waits while every slot is busy. An item whose task name (module,
        version and suffix) is already waiting or running is dropped.

        Returns:
            True if the item was scheduled.
        """
        item = WorkItem(module_path, version, suffix)
        name = item.task_name
        if name in self._in_flight:
            logger.debug("%s is already scheduled", name)
            return False
        self._in_flight.add(name)
        try:
            await self._sem.acquire()
        except asyncio.CancelledError:
            self._in_flight.discard(name)
            raise
        task = asyncio.create_task(self._run(item), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("Scheduled %s", name)
        return True

    async def _run(self, item: WorkItem) -> None:
        name = item.task_name
        status = STATUS_INTERNAL_ERROR
        try:
            status, err = await asyncio.wait_for(
                self._process(item.module_path, item.version), self.timeout
            )
            if err is not None:
                logger.info("%s: status %d: %s", name, status, err)
        except asyncio.TimeoutError:
            status = ProxyTimedOut.status
            logger.error("%s: timed out after %.0fs", name, self.timeout)
        except Exception as e:
            status = to_status(e)
            logger.exception("%s: fetch failed", name)
        finally:
            self.results[name] = status
            self._in_flight.discard(name)
            self._sem.release()

    async def wait_for_testing(self) -> None:
        """Wait until no item is running.

        Acquires every slot, which is only possible once all running items
        have released theirs, and then releases them again.
        """
        for _ in range(self.workers):
            await self._sem.acquire()
        for _ in range(self.workers):
            self._sem.release()


async def requeue(db: Persistence, queue: InMemoryQueue, limit: int) -> int:
    """Schedule up to limit versions that are due for a (re)fetch.

    Scheduling a version twice is harmless: storing a fetch replaces
    whatever an earlier fetch stored.

    Returns:
        Number of scheduled items.
    """
    states = await db.get_next_versions_to_fetch(limit)
    scheduled = 0
    for state in states:
        if await queue.schedule(state.module_path, state.version):
            scheduled += 1
    logger.info("Scheduled %d of %d versions", scheduled, len(states))
    return scheduled
