"""Per-type priority job queues with a durable fallback."""

import json
import logging
from typing import Optional

from digest_engine.adapters.cache.service import CacheService
from digest_engine.core.entities import TimeWindow, WatchlistEntry
from digest_engine.core.interfaces import JobStore
from digest_engine.core.jobs import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PRIORITIES,
    DigestGenerationPayload,
    Job,
    JobPayload,
    JobType,
    PingProcessingPayload,
    SummarizationPayload,
    WatchlistUpdatePayload,
)

log = logging.getLogger(__name__)


class JobQueue:
    """Enqueue into the cache's sorted sets; fall back to the job table.

    Jobs are never dropped: when the cache refuses a push the job is written
    to the store, and dequeue drains the cache before the store.
    """

    def __init__(
        self,
        cache: CacheService,
        store: JobStore,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("Jobs need at least one attempt")
        self.cache = cache
        self.store = store
        self.max_attempts = max_attempts

    async def enqueue(
        self,
        job_type: JobType,
        payload: JobPayload,
        priority: Optional[int] = None,
    ) -> str:
        job_type = JobType(job_type)
        job = Job(
            type=job_type,
            payload=payload,
            priority=DEFAULT_PRIORITIES[job_type] if priority is None else priority,
            max_attempts=self.max_attempts,
        )
        await self._push(job)
        log.info("Enqueued %s job %s (priority %d)", job.type.value, job.id, job.priority)
        return job.id

    async def requeue(self, job: Job) -> None:
        """Put a job back keeping its id and attempt count."""
        await self._push(job)
        log.info(
            "Requeued %s job %s (attempt %d/%d)",
            job.type.value, job.id, job.attempts, job.max_attempts,
        )

    async def dequeue(self, job_type: JobType) -> Optional[Job]:
        """Pop the highest-priority job of a type, or None; never blocks."""
        job_type = JobType(job_type)
        raw = await self.cache.pop_max(job_type.value)
        if raw is not None:
            try:
                return Job.from_dict(json.loads(raw))
            except (ValueError, KeyError, TypeError) as e:
                log.error("Discarding undecodable %s job: %s", job_type.value, e)
        return await self.store.pop_job(job_type)

    async def _push(self, job: Job) -> None:
        member = json.dumps(job.to_dict())
        if await self.cache.push(job.type.value, member, job.priority):
            return
        log.info("Cache queue unavailable, storing job %s in the job table", job.id)
        await self.store.insert_job(job)

    async def enqueue_digest_generation(
        self,
        user_id: str,
        window: Optional[TimeWindow] = None,
        max_items: Optional[int] = None,
        priority: Optional[int] = None,
    ) -> str:
        payload = DigestGenerationPayload(user_id=user_id, window=window, max_items=max_items)
        return await self.enqueue(JobType.DIGEST_GENERATION, payload, priority)

    async def enqueue_ping_processing(
        self,
        ping_id: str,
        from_persona_id: str,
        to_persona_id: str,
        priority: Optional[int] = None,
    ) -> str:
        payload = PingProcessingPayload(
            ping_id=ping_id, from_persona_id=from_persona_id, to_persona_id=to_persona_id
        )
        return await self.enqueue(JobType.PING_PROCESSING, payload, priority)

    async def enqueue_llm_summarization(
        self,
        content: str,
        tags: tuple[str, ...] = (),
        watchlist: tuple[WatchlistEntry, ...] = (),
        item_id: Optional[str] = None,
        priority: Optional[int] = None,
    ) -> str:
        payload = SummarizationPayload(
            content=content, tags=tuple(tags), watchlist=tuple(watchlist), item_id=item_id
        )
        return await self.enqueue(JobType.LLM_SUMMARIZATION, payload, priority)

    async def enqueue_watchlist_update(
        self,
        user_id: str,
        watchlist: tuple[WatchlistEntry, ...] = (),
        priority: Optional[int] = None,
    ) -> str:
        payload = WatchlistUpdatePayload(user_id=user_id, watchlist=tuple(watchlist))
        return await self.enqueue(JobType.WATCHLIST_UPDATE, payload, priority)
