"""Tests for job handlers."""

from unittest.mock import AsyncMock

import pytest

from digest_engine.adapters.cache import Namespace
from digest_engine.core import Job, JobType, Persona, TimeWindow, WatchlistEntry, WatchlistKind
from digest_engine.core.errors import NotFoundError
from digest_engine.core.jobs import (
    DigestGenerationPayload,
    PingProcessingPayload,
    SummarizationPayload,
    WatchlistUpdatePayload,
)
from digest_engine.jobs.handlers import JobHandlers
from digest_engine.use_cases import DigestService, PersonaService, WatchlistService


@pytest.fixture
def handlers(store, cache, now) -> JobHandlers:
    personas = PersonaService(store, cache)
    watchlists = WatchlistService(store, cache, digests=store)
    digests = DigestService(
        candidates=store,
        digests=store,
        watchlists=watchlists,
        personas=personas,
        cache=cache,
        clock=lambda: now,
    )
    return JobHandlers(digests, watchlists, personas, pings=store)


def test_mapping_covers_every_job_type(handlers) -> None:
    assert set(handlers.mapping()) == set(JobType)


@pytest.mark.asyncio
async def test_digest_generation_job_warms_the_cache(handlers, store, cache, make_item, now) -> None:
    await store.add_candidate(make_item("post-1"))
    window = TimeWindow(start=now.replace(hour=0), end=now)
    job = Job(type=JobType.DIGEST_GENERATION, payload=DigestGenerationPayload("u1", window, 5))

    await handlers.generate_digest(job)

    cached = await cache.get(Namespace.DIGEST, f"u1:{window.slice_key}")
    assert cached["total_items"] == 1
    assert cached["highlights"][0]["id"] == "post-1"


@pytest.mark.asyncio
async def test_ping_processing_marks_sent_and_records_action(handlers, store) -> None:
    await store.add_ping("ping-1")
    job = Job(
        type=JobType.PING_PROCESSING,
        payload=PingProcessingPayload("ping-1", from_persona_id="alice", to_persona_id="bob"),
    )

    await handlers.process_ping(job)

    assert await store.get_ping_status("ping-1") == "sent"
    actions = await store.list_actions("ping_received")
    assert len(actions) == 1
    assert actions[0]["persona_id"] == "bob"
    assert actions[0]["target_id"] == "ping-1"
    assert actions[0]["metadata"] == {"action": "processed", "from_persona_id": "alice"}


@pytest.mark.asyncio
async def test_ping_processing_fails_for_unknown_ping(handlers, store) -> None:
    job = Job(
        type=JobType.PING_PROCESSING,
        payload=PingProcessingPayload("missing", from_persona_id="alice", to_persona_id="bob"),
    )

    with pytest.raises(NotFoundError):
        await handlers.process_ping(job)
    assert await store.list_actions("ping_received") == []


@pytest.mark.asyncio
async def test_summarization_job_stores_tldr(handlers, cache) -> None:
    handlers.pipeline = AsyncMock()
    handlers.pipeline.generate_tldr.return_value = "TL;DR: Rust news"
    watch = WatchlistEntry(kind=WatchlistKind.TAG, value="rust")
    job = Job(
        type=JobType.LLM_SUMMARIZATION,
        payload=SummarizationPayload("Rust news.", tags=("rust",), watchlist=(watch,), item_id="p1"),
    )

    assert await handlers.summarize(job) == "TL;DR: Rust news"
    handlers.pipeline.generate_tldr.assert_awaited_once_with("Rust news.", ["rust"], [watch])
    assert await cache.get(Namespace.SUMMARY, "p1") == "TL;DR: Rust news"


@pytest.mark.asyncio
async def test_watchlist_update_job_refreshes_caches(handlers, store, cache) -> None:
    await store.upsert_persona(Persona(user_id="u1"))
    await handlers.personas.get("u1")
    await cache.set(Namespace.WATCHLIST, "u1", [], 60)
    await cache.set(Namespace.DIGEST, "u1:some-slice", {"stale": True}, 60)
    entries = (WatchlistEntry(kind=WatchlistKind.CATEGORY, value="programming"),)
    job = Job(type=JobType.WATCHLIST_UPDATE, payload=WatchlistUpdatePayload("u1", entries))

    await handlers.update_watchlist(job)

    assert await cache.get(Namespace.WATCHLIST, "u1") == [entries[0].to_dict()]
    assert await cache.get(Namespace.DIGEST, "u1:some-slice") is None
    assert await cache.get(Namespace.PERSONA, "u1") is None
