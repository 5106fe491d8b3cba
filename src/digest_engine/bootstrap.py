"""Wire settings, adapters and services into one application context."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from digest_engine.adapters.cache.rate_limit import RateLimiter
from digest_engine.adapters.cache.service import CacheService
from digest_engine.adapters.llm import ClaudeSummarizer
from digest_engine.adapters.store import SQLiteStore
from digest_engine.api import DigestAPI
from digest_engine.config import Settings, get_settings
from digest_engine.core.interfaces import Summarizer
from digest_engine.core.scoring import ScoringEngine, ScoringWeights
from digest_engine.core.summarization import SummarizationPipeline
from digest_engine.jobs import JobQueue, WorkerPool
from digest_engine.jobs.handlers import JobHandlers
from digest_engine.use_cases import (
    DigestService,
    HealthService,
    PersonaService,
    WatchlistService,
)

log = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything a process needs; built once by the entry point."""

    settings: Settings
    cache: CacheService
    store: SQLiteStore
    personas: PersonaService
    watchlists: WatchlistService
    digests: DigestService
    queue: JobQueue
    worker: WorkerPool
    health: HealthService
    api: DigestAPI

    async def start(self, run_worker: bool = False) -> None:
        await self.cache.connect()
        if run_worker:
            await self.worker.start()

    async def stop(self) -> None:
        await self.worker.stop()
        await self.cache.close()
        self.store.close()


def build_context(
    settings: Optional[Settings] = None,
    store: Optional[SQLiteStore] = None,
    cache: Optional[CacheService] = None,
    summarizer: Optional[Summarizer] = None,
) -> AppContext:
    settings = settings or get_settings()
    store = store or SQLiteStore(settings.database_path)
    cache = cache or CacheService.from_url(settings.cache.url, settings.cache.socket_timeout)

    if summarizer is None and settings.claude_enabled:
        summarizer = ClaudeSummarizer(settings)
        log.info("Using Claude (%s) for summaries", settings.claude.model)
    pipeline = SummarizationPipeline(summarizer)

    scoring = ScoringEngine(
        weights=ScoringWeights(**settings.scoring.weights),
        novelty=settings.scoring.novelty,
        horizon=timedelta(hours=settings.scoring.horizon_hours),
    )

    rate_limiter = None
    if settings.rate_limit.enabled:
        rate_limiter = RateLimiter(
            cache, settings.rate_limit.limit, settings.rate_limit.window_seconds
        )

    personas = PersonaService(store, cache, ttl=settings.cache.persona_ttl)
    watchlists = WatchlistService(store, cache, digests=store, ttl=settings.cache.watchlist_ttl)
    digests = DigestService(
        candidates=store,
        digests=store,
        watchlists=watchlists,
        personas=personas,
        cache=cache,
        scoring=scoring,
        pipeline=pipeline,
        rate_limiter=rate_limiter,
        max_items=settings.digest.max_items,
        candidate_limit=settings.digest.candidate_limit,
        ttl_seconds=settings.digest.ttl_seconds,
        lookback=timedelta(hours=settings.digest.default_lookback_hours),
        window_step=timedelta(seconds=settings.digest.window_step_seconds),
    )

    queue = JobQueue(cache, store, max_attempts=settings.worker.max_attempts)
    handlers = JobHandlers(
        digests,
        watchlists,
        personas,
        pings=store,
        pipeline=pipeline,
        cache=cache,
        summary_ttl=settings.digest.ttl_seconds,
    )
    worker = WorkerPool(
        queue,
        handlers.mapping(),
        store,
        cache=cache,
        concurrency=settings.worker.concurrency,
        poll_interval=settings.worker.poll_interval,
        retry_delay=settings.worker.retry_delay,
        job_timeout=settings.worker.job_timeout,
    )
    health = HealthService(cache, worker)

    return AppContext(
        settings=settings,
        cache=cache,
        store=store,
        personas=personas,
        watchlists=watchlists,
        digests=digests,
        queue=queue,
        worker=worker,
        health=health,
        api=DigestAPI(digests, watchlists, health),
    )
