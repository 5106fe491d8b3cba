"""Fixed-size pool of polling workers."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from digest_engine.adapters.cache.service import CacheService
from digest_engine.core.errors import JobExecutionError
from digest_engine.core.interfaces import JobStore
from digest_engine.core.jobs import JOB_TYPE_ORDER, Job, JobFailure, JobType
from digest_engine.jobs.queue import JobQueue

log = logging.getLogger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]


class WorkerPool:
    """N independent poll loops sharing one queue.

    Each tick a worker walks the job types in priority order and runs at most
    one job. Failed jobs are retried after `retry_delay` until they reach
    their attempt ceiling, then recorded as permanent failures.
    """

    def __init__(
        self,
        queue: JobQueue,
        handlers: Mapping[JobType, JobHandler],
        store: JobStore,
        cache: Optional[CacheService] = None,
        concurrency: int = 3,
        poll_interval: float = 5.0,
        retry_delay: float = 30.0,
        job_timeout: float = 30.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("Worker pool needs at least one worker")
        self.queue = queue
        self.handlers = dict(handlers)
        self.store = store
        self.cache = cache or queue.cache
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.retry_delay = retry_delay
        self.job_timeout = job_timeout

        self._stopping = asyncio.Event()
        self._workers: list[asyncio.Task] = []
        self._delayed: dict[str, tuple[asyncio.Task, Job]] = {}
        self._retry_tasks: set[asyncio.Task] = set()
        self.completed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._workers = [
            asyncio.create_task(self._run(n), name=f"digest-worker-{n}")
            for n in range(self.concurrency)
        ]
        log.info("Started %d workers (poll every %.1fs)", self.concurrency, self.poll_interval)

    async def stop(self) -> None:
        """Stop polling and push delayed retries back onto the queue now."""
        self._stopping.set()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        flushed = list(self._delayed.values())
        self._delayed.clear()
        for task, _ in flushed:
            task.cancel()
        for _, job in flushed:
            await self.queue.requeue(job)
        if self._retry_tasks:
            await asyncio.gather(*self._retry_tasks, return_exceptions=True)
        if flushed:
            log.info("Flushed %d delayed retries back to the queue", len(flushed))
        log.info("Workers stopped")

    async def health(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "workers": len(self._workers),
            "cache_healthy": await self.cache.health_check(),
            "pending_retries": len(self._delayed),
            "completed": self.completed,
            "failed": self.failed,
        }

    async def _run(self, worker_id: int) -> None:
        while not self._stopping.is_set():
            try:
                await self.tick(worker_id)
            except Exception:
                log.exception("Worker %d tick failed", worker_id, extra={"worker": worker_id})
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def tick(self, worker_id: int = 0) -> Optional[Job]:
        """Run the first ready job in priority order; return it, or None if idle."""
        for job_type in JOB_TYPE_ORDER:
            job = await self.queue.dequeue(job_type)
            if job is None:
                continue
            await self.execute(job, worker_id)
            return job
        return None

    async def execute(self, job: Job, worker_id: int = 0) -> bool:
        extra = {"job_id": job.id, "job_type": job.type.value, "worker": worker_id}
        handler = self.handlers.get(job.type)
        try:
            if handler is None:
                raise JobExecutionError(
                    f"No handler registered for {job.type.value}", job.id, job.type.value
                )
            await asyncio.wait_for(handler(job), timeout=self.job_timeout)
        except asyncio.TimeoutError:
            error = JobExecutionError(
                f"Timed out after {self.job_timeout:.1f}s", job.id, job.type.value
            )
            await self._handle_failure(job, error)
            return False
        except Exception as e:
            await self._handle_failure(job, e)
            return False

        self.completed += 1
        log.info("Job %s (%s) completed", job.id, job.type.value, extra=extra)
        return True

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        job.attempts += 1
        extra = {"job_id": job.id, "job_type": job.type.value, "attempt": job.attempts}

        if not job.exhausted:
            log.warning(
                "Job %s failed (attempt %d/%d), retrying in %.1fs: %s",
                job.id, job.attempts, job.max_attempts, self.retry_delay, error,
                extra=extra,
            )
            await self._schedule_retry(job)
            return

        self.failed += 1
        try:
            await self.store.record_failure(JobFailure.from_job(job, error))
        except Exception:
            log.exception("Could not record permanent failure of job %s", job.id, extra=extra)

    async def _schedule_retry(self, job: Job) -> None:
        if self.retry_delay <= 0:
            await self.queue.requeue(job)
            return
        task = asyncio.create_task(self._requeue_later(job))
        self._delayed[job.id] = (task, job)
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _requeue_later(self, job: Job) -> None:
        await asyncio.sleep(self.retry_delay)
        # stop() may already have flushed this job
        if self._delayed.pop(job.id, None) is None:
            return
        await self.queue.requeue(job)
