"""
Background Task Queue for Axis Sync
In-process asyncio queue for fire-and-forget sync jobs (post-CRUD hooks, webhook pulls)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from axis_sync.core.models import utcnow


@dataclass
class QueuedJob:
    """Job waiting for a worker"""
    name: str
    func: Callable[..., Awaitable[Any]]
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)


class BackgroundTaskQueue:
    """Worker pool that runs coroutine jobs, logs failures and never propagates them"""

    def __init__(self, workers: int = 2):
        self.worker_count = max(1, workers)
        self.logger = logging.getLogger(__name__)

        self.is_running = False
        self._queue: Optional[asyncio.Queue] = None
        self._workers = []
        self._detached: Set[asyncio.Task] = set()

        self.submitted = 0
        self.completed = 0
        self.failed = 0
        self.last_error: Optional[str] = None
        self.last_completed_at = None

    async def start(self):
        """Start the worker pool"""
        if self.is_running:
            return

        self._queue = asyncio.Queue()
        self.is_running = True
        self._workers = [
            asyncio.create_task(self._worker_loop(index)) for index in range(self.worker_count)
        ]
        self.logger.info(f"Background task queue started with {self.worker_count} workers")

    async def stop(self, drain: bool = True):
        """Stop workers; pending jobs are finished first when `drain` is set"""
        if not self.is_running:
            return

        if drain and self._queue is not None:
            await self._queue.join()

        self.is_running = False
        for worker in self._workers:
            worker.cancel()
        for worker in self._workers:
            try:
                await worker
            except asyncio.CancelledError:
                pass
        self._workers = []

        if self._detached:
            await asyncio.gather(*self._detached, return_exceptions=True)

        self.logger.info("Background task queue stopped")

    def submit(self, name: str, func: Callable[..., Awaitable[Any]], *args, **kwargs):
        """Queue a job; without running workers it runs as a detached task"""
        job = QueuedJob(name=name, func=func, args=args, kwargs=kwargs)
        self.submitted += 1

        if self.is_running and self._queue is not None:
            self._queue.put_nowait(job)
            self.logger.debug(f"Queued job: {name}")
            return

        task = asyncio.create_task(self._run(job))
        self._detached.add(task)
        task.add_done_callback(self._detached.discard)

    async def join(self):
        """Wait until every submitted job has finished"""
        if self._queue is not None and self.is_running:
            await self._queue.join()
        if self._detached:
            await asyncio.gather(*list(self._detached), return_exceptions=True)

    async def _worker_loop(self, index: int):
        while self.is_running:
            job = await self._queue.get()
            try:
                await self._run(job)
            finally:
                self._queue.task_done()

    async def _run(self, job: QueuedJob):
        try:
            await job.func(*job.args, **job.kwargs)
            self.completed += 1
            self.last_completed_at = utcnow()
        except Exception as e:
            self.failed += 1
            self.last_error = f"{job.name}: {e}"
            self.logger.error(f"Background job failed: {job.name} - {e}")

    def get_status(self) -> Dict[str, Any]:
        return {
            'is_running': self.is_running,
            'workers': self.worker_count,
            'pending': self._queue.qsize() if self._queue is not None else 0,
            'submitted': self.submitted,
            'completed': self.completed,
            'failed': self.failed,
            'last_error': self.last_error,
            'last_completed_at': self.last_completed_at.isoformat() if self.last_completed_at else None,
        }
