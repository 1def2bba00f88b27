"""Process-local registry of detached revision and enrichment runs."""

import asyncio
from typing import Coroutine, Dict, Optional
from uuid import UUID

from imagineer.core.exceptions import ConflictError
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)


class BackgroundTaskRegistry:
    """Tracks at most one running background task per job.

    Cross-instance exclusion for enrichment lives in the database lease; this
    registry only lets the owning process cancel its own task.
    """

    def __init__(self):
        self._tasks: Dict[UUID, asyncio.Task] = {}

    def get(self, job_id: UUID) -> Optional[asyncio.Task]:
        task = self._tasks.get(job_id)
        if task is not None and task.done():
            self._tasks.pop(job_id, None)
            return None
        return task

    def is_running(self, job_id: UUID) -> bool:
        return self.get(job_id) is not None

    def start(self, job_id: UUID, kind: str, coro: Coroutine) -> asyncio.Task:
        """Schedule ``coro`` for ``job_id``.

        Raises:
            ConflictError: If another task for the job is still running
        """
        running = self.get(job_id)
        if running is not None:
            coro.close()
            raise ConflictError(f"A {running.get_name().split(':')[0]} run is already in progress for this job")

        task = asyncio.create_task(coro, name=f"{kind}:{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda t: self._finished(job_id, kind, t))
        LOGGER.info("Background task started", extra={"job_id": str(job_id), "kind": kind})
        return task

    def cancel(self, job_id: UUID) -> bool:
        task = self.get(job_id)
        if task is None:
            return False
        task.cancel()
        return True

    def _finished(self, job_id: UUID, kind: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
        if task.cancelled():
            LOGGER.info("Background task cancelled", extra={"job_id": str(job_id), "kind": kind})
            return
        error = task.exception()
        if error is not None:
            LOGGER.error(
                f"Background task failed: {error}",
                exc_info=error,
                extra={"job_id": str(job_id), "kind": kind},
            )
        else:
            LOGGER.info("Background task finished", extra={"job_id": str(job_id), "kind": kind})

    async def shutdown(self) -> None:
        """Cancel everything still running (application shutdown)."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


task_registry = BackgroundTaskRegistry()
