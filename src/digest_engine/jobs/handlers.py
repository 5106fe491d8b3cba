"""Job handlers, one per job type."""

import logging
from typing import Optional

from digest_engine.adapters.cache.service import CacheService, Namespace
from digest_engine.core.interfaces import PingStore
from digest_engine.core.jobs import (
    DigestGenerationPayload,
    Job,
    JobType,
    PingProcessingPayload,
    SummarizationPayload,
    WatchlistUpdatePayload,
)
from digest_engine.core.summarization import SummarizationPipeline
from digest_engine.jobs.worker import JobHandler
from digest_engine.use_cases import (
    DIGEST_TTL_SECONDS,
    DigestService,
    PersonaService,
    WatchlistService,
)

log = logging.getLogger(__name__)


class JobHandlers:
    """Bind job types to the services that do the work."""

    def __init__(
        self,
        digests: DigestService,
        watchlists: WatchlistService,
        personas: PersonaService,
        pings: PingStore,
        pipeline: Optional[SummarizationPipeline] = None,
        cache: Optional[CacheService] = None,
        summary_ttl: int = DIGEST_TTL_SECONDS,
    ) -> None:
        self.digests = digests
        self.watchlists = watchlists
        self.personas = personas
        self.pings = pings
        self.pipeline = pipeline or digests.pipeline
        self.cache = cache or digests.cache
        self.summary_ttl = summary_ttl

    def mapping(self) -> dict[JobType, JobHandler]:
        return {
            JobType.DIGEST_GENERATION: self.generate_digest,
            JobType.PING_PROCESSING: self.process_ping,
            JobType.LLM_SUMMARIZATION: self.summarize,
            JobType.WATCHLIST_UPDATE: self.update_watchlist,
        }

    async def generate_digest(self, job: Job) -> None:
        payload: DigestGenerationPayload = job.payload
        window = payload.window
        digest = await self.digests.generate_digest(
            payload.user_id,
            start=window.start if window else None,
            end=window.end if window else None,
            max_items=payload.max_items,
        )
        log.info("Digest generated for %s (%d highlights)", payload.user_id, len(digest.highlights))

    async def process_ping(self, job: Job) -> None:
        payload: PingProcessingPayload = job.payload
        await self.pings.mark_ping_sent(payload.ping_id)
        await self.pings.record_action(
            persona_id=payload.to_persona_id,
            action_type="ping_received",
            target_id=payload.ping_id,
            metadata={"action": "processed", "from_persona_id": payload.from_persona_id},
        )
        log.info("Ping %s processed", payload.ping_id)

    async def summarize(self, job: Job) -> str:
        payload: SummarizationPayload = job.payload
        tldr = await self.pipeline.generate_tldr(
            payload.content, list(payload.tags), list(payload.watchlist)
        )
        key = payload.item_id or job.id
        await self.cache.set(Namespace.SUMMARY, key, tldr, self.summary_ttl)
        log.info("Summarization completed for %s: %s", key, tldr[:50])
        return tldr

    async def update_watchlist(self, job: Job) -> None:
        payload: WatchlistUpdatePayload = job.payload
        await self.watchlists.on_external_write(payload.user_id, list(payload.watchlist))
        await self.personas.invalidate(payload.user_id)
        log.info("Watchlist cache refreshed for %s", payload.user_id)
