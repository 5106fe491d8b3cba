"""Shared fixtures."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest

from digest_engine.adapters.cache import CacheService, MemoryBackend
from digest_engine.adapters.store import SQLiteStore
from digest_engine.core import CandidateItem, Visibility

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_item() -> Callable[..., CandidateItem]:
    """Build candidate items with sensible defaults."""

    def factory(item_id: str = "item-1", hours_ago: float = 1.0, **overrides) -> CandidateItem:
        data = {
            "id": item_id,
            "author": "author-1",
            "title": f"Title of {item_id}",
            "content": "Rust makes systems programming safer. Go is simple.",
            "created_at": NOW - timedelta(hours=hours_ago),
            "tags": ("rust", "go"),
            "category": "programming",
            "visibility": Visibility.PUBLIC,
        }
        data.update(overrides)
        return CandidateItem(**data)

    return factory


@pytest.fixture
def store(tmp_path: Path):
    """File-backed SQLite store in a temp directory."""
    sqlite_store = SQLiteStore(tmp_path / "digest.db")
    yield sqlite_store
    sqlite_store.close()


@pytest.fixture
async def cache() -> CacheService:
    """Connected cache over the in-memory backend."""
    service = CacheService(MemoryBackend())
    await service.connect()
    return service


class BrokenBackend(MemoryBackend):
    """Backend that answers ping and fails every other call."""

    name = "broken"

    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    def _fail(self, *args, **kwargs):
        self.calls += 1
        raise ConnectionError("backend down")

    async def get(self, key):
        self._fail()

    async def set(self, key, value, ttl):
        self._fail()

    async def delete(self, *keys):
        self._fail()

    async def keys(self, pattern):
        self._fail()

    async def incr_with_ttl(self, key, ttl):
        self._fail()

    async def ttl(self, key):
        self._fail()

    async def zadd(self, key, member, score):
        self._fail()

    async def zpopmax(self, key):
        self._fail()

    async def info(self):
        self._fail()


@pytest.fixture
async def broken_cache() -> CacheService:
    service = CacheService(BrokenBackend())
    await service.connect()
    return service
