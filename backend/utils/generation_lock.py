import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)


class GenerationLock:
    """
    Nullable handle to one outstanding async job.

    run() starts the job only when none is in flight; while one is running,
    further calls return the existing task instead of starting a duplicate.
    Safe without a Lock: asyncio is single-threaded and there is no await
    between the check and the assignment.
    """

    def __init__(self, name: str):
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._detached: Set[asyncio.Task] = set()  # strong refs until they finish

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task if self.busy else None

    def run(self, job: Callable[[], Awaitable[None]]) -> asyncio.Task:
        if self.busy:
            return self._task
        task = asyncio.get_running_loop().create_task(self._guarded(job))
        self._task = task
        return task

    async def _guarded(self, job: Callable[[], Awaitable[None]]) -> None:
        try:
            await job()
        except Exception:
            logger.exception("Background job '%s' failed", self.name)
        finally:
            if self._task is asyncio.current_task():
                self._task = None

    def detach(self) -> None:
        """Forget the in-flight job (its result must be discarded by the caller)."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            self._detached.add(task)
            task.add_done_callback(self._detached.discard)
