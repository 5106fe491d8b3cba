"""Tests for the request handlers."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from digest_engine.adapters.cache import RateLimiter
from digest_engine.api import DigestAPI
from digest_engine.core import Persona
from digest_engine.use_cases import DigestService, HealthService, PersonaService, WatchlistService


@pytest.fixture
def api(store, cache, now) -> DigestAPI:
    personas = PersonaService(store, cache)
    watchlists = WatchlistService(store, cache, digests=store)
    digests = DigestService(
        candidates=store,
        digests=store,
        watchlists=watchlists,
        personas=personas,
        cache=cache,
        rate_limiter=RateLimiter(cache, limit=2, window_seconds=60),
        clock=lambda: now,
    )
    return DigestAPI(digests, watchlists, HealthService(cache))


@pytest.mark.asyncio
async def test_post_digest_returns_digest(api, store, make_item, now) -> None:
    await store.add_candidate(make_item("post-1"))

    response = await api.post_digest("u1", {"maxItems": 5})

    assert response.status == 200
    digest = response.body["digest"]
    assert digest["total_items"] == 1
    assert digest["highlights"][0]["id"] == "post-1"
    assert digest["time_window"]["end"] == now.isoformat()


@pytest.mark.asyncio
async def test_post_digest_status_codes(api, now) -> None:
    assert (await api.post_digest(None, {})).status == 401
    assert (await api.post_digest("u1", ["not", "a", "dict"])).status == 400
    assert (await api.post_digest("u1", {"maxItems": 500})).status == 400
    assert (await api.post_digest("u1", {"windowStart": "garbage"})).status == 400
    assert (await api.post_digest("u1", {"continueToken": "%%%"})).status == 400


@pytest.mark.asyncio
async def test_post_digest_rate_limited(api, now) -> None:
    for hours in (1, 2):
        start = (now - timedelta(hours=hours)).isoformat()
        assert (await api.post_digest("u1", {"windowStart": start})).status == 200

    response = await api.post_digest("u1", {"windowStart": (now - timedelta(hours=3)).isoformat()})

    assert response.status == 429
    assert response.body["retry_after"] > 0


@pytest.mark.asyncio
async def test_post_digest_hides_internal_errors(api) -> None:
    api.digests.candidates = AsyncMock()
    api.digests.candidates.find_candidates.side_effect = RuntimeError("db exploded")

    response = await api.post_digest("u1", {})

    assert response.status == 500
    assert response.body == {"error": "Failed to generate digest"}


@pytest.mark.asyncio
async def test_watchlist_actions(api) -> None:
    added = await api.post_watchlist("u1", {"action": "add", "kind": "tag", "value": "rust"})
    assert added.status == 200
    assert added.body == {"success": True, "entry": {"kind": "tag", "value": "rust", "weight": 1.0}}

    duplicate = await api.post_watchlist("u1", {"action": "add", "kind": "tag", "value": "rust"})
    assert duplicate.status == 409
    assert duplicate.body["error"] == "Item already in watchlist"

    updated = await api.post_watchlist(
        "u1", {"action": "update", "kind": "tag", "value": "rust", "weight": 1.8}
    )
    assert updated.body["entry"]["weight"] == 1.8

    listed = await api.get_watchlist("u1")
    assert listed.status == 200
    assert listed.body == {"watchlists": [{"kind": "tag", "value": "rust", "weight": 1.8}]}

    removed = await api.post_watchlist("u1", {"action": "remove", "kind": "tag", "value": "rust"})
    assert removed.body == {"success": True}
    assert (await api.get_watchlist("u1")).body == {"watchlists": []}


@pytest.mark.asyncio
async def test_watchlist_rejects_bad_requests(api) -> None:
    assert (await api.get_watchlist("")).status == 401
    assert (await api.post_watchlist(None, {"action": "add"})).status == 401

    invalid = await api.post_watchlist("u1", {"action": "replace", "kind": "tag", "value": "x"})
    assert invalid.status == 400
    assert invalid.body["error"] == "Invalid action"

    missing = await api.post_watchlist("u1", {"action": "add", "kind": "tag"})
    assert missing.status == 400
    assert missing.body["error"] == "Missing required fields"

    heavy = await api.post_watchlist(
        "u1", {"action": "add", "kind": "tag", "value": "x", "weight": 3}
    )
    assert heavy.status == 400

    gone = await api.post_watchlist("u1", {"action": "remove", "kind": "tag", "value": "x"})
    assert gone.status == 404


@pytest.mark.asyncio
async def test_health_endpoint(api) -> None:
    response = await api.get_health()

    assert response.status == 200
    assert response.body["status"] == "healthy"
    assert response.body["services"]["cache"]["status"] == "up"


@pytest.mark.asyncio
async def test_post_digest_rejects_non_string_token(api) -> None:
    response = await api.post_digest("u1", {"continueToken": 123})

    assert response.status == 400
    assert response.body["error"] == "Continue token must be a string"


@pytest.mark.asyncio
async def test_post_digest_tolerates_activity_ahead_of_clock(api, store, now) -> None:
    await store.upsert_persona(Persona(user_id="u1", last_active=now + timedelta(seconds=5)))

    response = await api.post_digest("u1", {})

    assert response.status == 200
    assert response.body["digest"]["total_items"] == 0
