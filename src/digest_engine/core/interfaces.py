"""Core interfaces for adapters."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from digest_engine.core.entities import (
    CandidateFilters,
    CandidateItem,
    DigestResult,
    IndexResult,
    Persona,
    StoredDigest,
    TimeWindow,
    WatchlistEntry,
    WatchlistKind,
)
from digest_engine.core.jobs import Job, JobFailure, JobType


class CacheBackend(ABC):
    """Raw key-value store behind the cache layer.

    Implementations may raise on any call; the cache layer absorbs it.
    All mutations are single-key atomic operations.
    """

    name: str = "backend"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int) -> None:
        pass

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        pass

    @abstractmethod
    async def keys(self, pattern: str) -> list[str]:
        """Return keys matching a Redis glob pattern (backslash escapes a metacharacter)."""
        pass

    @abstractmethod
    async def incr_with_ttl(self, key: str, ttl: int) -> int:
        """Increment a counter; the first increment starts its expiry."""
        pass

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Seconds until expiry, negative when the key has none or is absent."""
        pass

    @abstractmethod
    async def zadd(self, key: str, member: str, score: float) -> None:
        pass

    @abstractmethod
    async def zpopmax(self, key: str) -> Optional[str]:
        """Pop the member with the highest score, or None when empty."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        pass

    async def info(self) -> dict[str, Any]:
        return {}

    async def close(self) -> None:
        pass


class CandidateStore(ABC):
    """Read-only source of content items."""

    @abstractmethod
    async def find_candidates(
        self, window: TimeWindow, filters: CandidateFilters, limit: int
    ) -> list[CandidateItem]:
        """Items created inside the window matching the filters, newest first."""
        pass


class PersonaStore(ABC):
    """Read-only source of persona settings."""

    @abstractmethod
    async def get_persona(self, user_id: str) -> Optional[Persona]:
        pass


class WatchlistStore(ABC):
    """System of record for watchlists."""

    @abstractmethod
    async def list_entries(self, user_id: str) -> list[WatchlistEntry]:
        pass

    @abstractmethod
    async def add_entry(self, user_id: str, entry: WatchlistEntry) -> WatchlistEntry:
        """Insert an entry; raises ConflictError when (kind, value) exists."""
        pass

    @abstractmethod
    async def update_entry(self, user_id: str, entry: WatchlistEntry) -> WatchlistEntry:
        """Change the weight of an entry; raises NotFoundError when absent."""
        pass

    @abstractmethod
    async def remove_entry(self, user_id: str, kind: WatchlistKind, value: str) -> bool:
        pass


class DigestStore(ABC):
    """Durable digest cache table (second cache tier)."""

    @abstractmethod
    async def get_digest(
        self, user_id: str, slice_key: str, now: datetime
    ) -> Optional[StoredDigest]:
        """Return the stored digest and its expiry unless it has expired by `now`."""
        pass

    @abstractmethod
    async def upsert_digest(
        self, user_id: str, slice_key: str, digest: DigestResult, expires_at: datetime
    ) -> None:
        pass

    @abstractmethod
    async def delete_digests(self, user_id: str) -> int:
        """Drop every stored digest of a user."""
        pass


class JobStore(ABC):
    """Durable job table used when the cache cannot hold the queue."""

    @abstractmethod
    async def insert_job(self, job: Job) -> None:
        pass

    @abstractmethod
    async def pop_job(self, job_type: JobType) -> Optional[Job]:
        """Remove and return the highest-priority, oldest job of a type."""
        pass

    @abstractmethod
    async def record_failure(self, failure: JobFailure) -> None:
        pass


class PingStore(ABC):
    """Ping bookkeeping used by the ping processing job."""

    @abstractmethod
    async def mark_ping_sent(self, ping_id: str) -> None:
        pass

    @abstractmethod
    async def record_action(
        self, persona_id: str, action_type: str, target_id: str, metadata: dict
    ) -> None:
        pass


class Summarizer(ABC):
    """Text-understanding collaborator for the three summarization passes."""

    @abstractmethod
    async def index(
        self, content: str, tags: list[str], watchlist: list[WatchlistEntry]
    ) -> IndexResult:
        pass

    @abstractmethod
    async def preview(
        self, content: str, index: IndexResult, watchlist: list[WatchlistEntry]
    ) -> str:
        pass

    @abstractmethod
    async def refine(
        self,
        content: str,
        preview: str,
        index: IndexResult,
        watchlist: list[WatchlistEntry],
    ) -> str:
        pass
