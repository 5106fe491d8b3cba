"""Background job queue and worker pool."""

from digest_engine.jobs.queue import JobQueue
from digest_engine.jobs.worker import JobHandler, WorkerPool

__all__ = ["JobHandler", "JobQueue", "WorkerPool"]
