"""Tests for the cache layer."""

import pytest

from digest_engine.adapters.cache import CacheService, MemoryBackend, Namespace, RateLimiter
from digest_engine.adapters.cache.service import build_backend, escape_glob


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_memory_backend_expires_values() -> None:
    clock = FakeClock()
    backend = MemoryBackend(clock=clock)

    await backend.set("k", "v", ttl=10)
    assert await backend.get("k") == "v"
    assert await backend.ttl("k") == 10

    clock.now += 10
    assert await backend.get("k") is None
    assert await backend.ttl("k") == -2


@pytest.mark.asyncio
async def test_memory_backend_counter_keeps_first_expiry() -> None:
    clock = FakeClock()
    backend = MemoryBackend(clock=clock)

    assert await backend.incr_with_ttl("c", 60) == 1
    clock.now += 30
    assert await backend.incr_with_ttl("c", 60) == 2
    assert await backend.ttl("c") == 30
    clock.now += 30
    assert await backend.incr_with_ttl("c", 60) == 1


@pytest.mark.asyncio
async def test_memory_backend_pops_highest_priority_first() -> None:
    backend = MemoryBackend()
    await backend.zadd("q", "low", 1)
    await backend.zadd("q", "high-a", 5)
    await backend.zadd("q", "high-b", 5)

    assert await backend.zpopmax("q") == "high-a"
    assert await backend.zpopmax("q") == "high-b"
    assert await backend.zpopmax("q") == "low"
    assert await backend.zpopmax("q") is None


@pytest.mark.asyncio
async def test_cache_round_trips_json(cache: CacheService) -> None:
    assert await cache.set(Namespace.WATCHLIST, "u1", [{"kind": "tag", "value": "rust"}], 60)
    assert await cache.get(Namespace.WATCHLIST, "u1") == [{"kind": "tag", "value": "rust"}]
    assert await cache.get(Namespace.PERSONA, "u1") is None
    assert await cache.delete(Namespace.WATCHLIST, "u1") == 1
    assert await cache.get(Namespace.WATCHLIST, "u1") is None


@pytest.mark.asyncio
async def test_delete_pattern_only_touches_matching_keys(cache: CacheService) -> None:
    await cache.set(Namespace.DIGEST, "u1:slice-a", {"n": 1}, 60)
    await cache.set(Namespace.DIGEST, "u1:slice-b", {"n": 2}, 60)
    await cache.set(Namespace.DIGEST, "u2:slice-a", {"n": 3}, 60)

    assert await cache.delete_pattern(Namespace.DIGEST, "u1:*") == 2
    assert await cache.get(Namespace.DIGEST, "u2:slice-a") == {"n": 3}


@pytest.mark.asyncio
async def test_unconfigured_cache_stays_unavailable() -> None:
    cache = CacheService.from_url(None)
    await cache.connect()

    assert not cache.available
    assert await cache.get(Namespace.DIGEST, "k") is None
    assert await cache.set(Namespace.DIGEST, "k", 1, 60) is False
    assert await cache.increment_with_ttl("k", 60) is None
    assert await cache.push("digest_generation", "job", 1) is False
    assert await cache.health_check() is False
    assert (await cache.stats())["configured"] is False


@pytest.mark.asyncio
async def test_failing_backend_degrades_without_raising(broken_cache: CacheService) -> None:
    """Every call turns into a miss or no-op."""
    assert broken_cache.available
    assert await broken_cache.get(Namespace.DIGEST, "k") is None
    assert await broken_cache.set(Namespace.DIGEST, "k", {"a": 1}, 60) is False
    assert await broken_cache.delete(Namespace.DIGEST, "k") == 0
    assert await broken_cache.delete_pattern(Namespace.DIGEST, "*") == 0
    assert await broken_cache.increment_with_ttl("k", 60) is None
    assert await broken_cache.ttl(Namespace.RATE_LIMIT, "k") is None
    assert await broken_cache.push("q", "m", 1) is False
    assert await broken_cache.pop_max("q") is None
    assert (await broken_cache.stats())["connected"] is False
    assert broken_cache.backend.calls == 9


@pytest.mark.asyncio
async def test_unreachable_backend_is_marked_unavailable() -> None:
    backend = MemoryBackend()

    async def refuse() -> bool:
        raise ConnectionError("refused")

    backend.ping = refuse
    cache = CacheService(backend)
    await cache.connect()

    assert not cache.available
    assert await cache.get(Namespace.DIGEST, "k") is None


def test_build_backend_picks_by_url() -> None:
    assert build_backend(None) is None
    assert build_backend("") is None
    assert isinstance(build_backend("memory://"), MemoryBackend)


@pytest.mark.asyncio
async def test_rate_limiter_blocks_after_limit(cache: CacheService) -> None:
    limiter = RateLimiter(cache, limit=2, window_seconds=60)

    first = await limiter.check("digest:u1")
    second = await limiter.check("digest:u1")
    third = await limiter.check("digest:u1")

    assert first.allowed and first.remaining == 1
    assert second.allowed and second.remaining == 0
    assert not third.allowed
    assert 0 < third.reset_in <= 60
    assert (await limiter.check("digest:u2")).allowed


@pytest.mark.asyncio
async def test_rate_limiter_allows_when_cache_is_down(broken_cache: CacheService) -> None:
    limiter = RateLimiter(broken_cache, limit=1, window_seconds=60)
    for _ in range(3):
        assert (await limiter.check("digest:u1")).allowed


def test_rate_limiter_validates_arguments() -> None:
    cache = CacheService()
    with pytest.raises(ValueError):
        RateLimiter(cache, limit=0, window_seconds=60)


def test_escape_glob_escapes_metacharacters() -> None:
    assert escape_glob("plain-user") == "plain-user"
    assert escape_glob("a*b?[c]\\") == "a\\*b\\?\\[c\\]\\\\"


@pytest.mark.asyncio
async def test_escaped_pattern_matches_literally(cache: CacheService) -> None:
    for user_id in ("u[1]", "u1", "u?", "ux"):
        await cache.set(Namespace.DIGEST, f"{user_id}:slice", {"user": user_id}, 60)

    assert await cache.delete_pattern(Namespace.DIGEST, f"{escape_glob('u[1]')}:*") == 1
    assert await cache.delete_pattern(Namespace.DIGEST, f"{escape_glob('u?')}:*") == 1
    assert await cache.get(Namespace.DIGEST, "u1:slice") == {"user": "u1"}
    assert await cache.get(Namespace.DIGEST, "ux:slice") == {"user": "ux"}
