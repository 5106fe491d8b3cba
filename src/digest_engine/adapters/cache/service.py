"""Namespaced cache layer that degrades to "no cache" instead of failing.

Key layout:
- digest:{user_id}:{slice_key}  - computed digests
- watchlist:{user_id}           - watchlist entries
- persona:{user_id}             - persona settings
- rate_limit:{key}              - fixed-window counters
- queue:{job_type}              - priority job queues (sorted sets)
- summary:{item_id}             - TL;DRs from summarization jobs

Nothing stored here is authoritative. Every failure is logged and turned into
a miss or no-op; callers fall back to the system of record.
"""

import json
import logging
from enum import Enum
from typing import Any, Optional

from digest_engine.core.interfaces import CacheBackend

log = logging.getLogger(__name__)

MEMORY_URL = "memory://"
GLOB_SPECIALS = frozenset("*?[]\\")


def escape_glob(text: str) -> str:
    """Backslash-escape glob metacharacters so `text` matches only itself."""
    return "".join("\\" + c if c in GLOB_SPECIALS else c for c in text)


class Namespace(str, Enum):
    DIGEST = "digest"
    WATCHLIST = "watchlist"
    PERSONA = "persona"
    RATE_LIMIT = "rate_limit"
    QUEUE = "queue"
    SUMMARY = "summary"


def build_backend(url: Optional[str], socket_timeout: float = 2.0) -> Optional[CacheBackend]:
    """Pick a backend for a cache URL; no URL means no cache."""
    if not url:
        return None
    if url == MEMORY_URL:
        from digest_engine.adapters.cache.memory_backend import MemoryBackend

        return MemoryBackend()
    from digest_engine.adapters.cache.redis_backend import RedisBackend

    return RedisBackend(url, socket_timeout=socket_timeout)


class CacheService:
    """Cache layer shared by the digest services and the job queue."""

    def __init__(self, backend: Optional[CacheBackend] = None) -> None:
        self.backend = backend
        self._available = False
        self._connected = False

    @classmethod
    def from_url(cls, url: Optional[str], socket_timeout: float = 2.0) -> "CacheService":
        return cls(build_backend(url, socket_timeout))

    @property
    def available(self) -> bool:
        return self._available

    async def connect(self) -> None:
        """Check the backend once; an unconfigured cache stays off for good."""
        if self._connected:
            return
        self._connected = True

        if self.backend is None:
            log.info("Cache not configured, using system of record only")
            return

        try:
            self._available = await self.backend.ping()
        except Exception as e:
            log.warning("Cache backend %s unreachable: %s", self.backend.name, e)
            self._available = False
            return

        if self._available:
            log.info("Cache connected (%s)", self.backend.name)

    async def close(self) -> None:
        if self.backend is None:
            return
        try:
            await self.backend.close()
        except Exception as e:
            log.warning("Cache close failed: %s", e)
        self._available = False

    @staticmethod
    def key(namespace: Namespace, key: str) -> str:
        return f"{Namespace(namespace).value}:{key}"

    async def get(self, namespace: Namespace, key: str) -> Optional[Any]:
        if not self._available:
            return None
        full_key = self.key(namespace, key)
        try:
            raw = await self.backend.get(full_key)
            return json.loads(raw) if raw is not None else None
        except Exception as e:
            log.warning("Cache get failed for %s: %s", full_key, e)
            return None

    async def set(self, namespace: Namespace, key: str, value: Any, ttl: int) -> bool:
        if not self._available:
            return False
        full_key = self.key(namespace, key)
        try:
            await self.backend.set(full_key, json.dumps(value, default=str), ttl)
            return True
        except Exception as e:
            log.warning("Cache set failed for %s: %s", full_key, e)
            return False

    async def delete(self, namespace: Namespace, key: str) -> int:
        if not self._available:
            return 0
        full_key = self.key(namespace, key)
        try:
            return await self.backend.delete(full_key)
        except Exception as e:
            log.warning("Cache delete failed for %s: %s", full_key, e)
            return 0

    async def delete_pattern(self, namespace: Namespace, pattern: str) -> int:
        """Delete every key in a namespace matching a glob pattern."""
        if not self._available:
            return 0
        full_pattern = self.key(namespace, pattern)
        try:
            keys = await self.backend.keys(full_pattern)
            return await self.backend.delete(*keys) if keys else 0
        except Exception as e:
            log.warning("Cache delete failed for pattern %s: %s", full_pattern, e)
            return 0

    async def increment_with_ttl(self, key: str, window: int) -> Optional[int]:
        """Fixed-window counter under rate_limit:; None when the cache is off."""
        if not self._available:
            return None
        full_key = self.key(Namespace.RATE_LIMIT, key)
        try:
            return await self.backend.incr_with_ttl(full_key, window)
        except Exception as e:
            log.warning("Cache increment failed for %s: %s", full_key, e)
            return None

    async def ttl(self, namespace: Namespace, key: str) -> Optional[int]:
        if not self._available:
            return None
        full_key = self.key(namespace, key)
        try:
            return await self.backend.ttl(full_key)
        except Exception as e:
            log.warning("Cache ttl failed for %s: %s", full_key, e)
            return None

    async def push(self, queue: str, member: str, priority: float) -> bool:
        """Add a member to a priority queue; False tells the caller to fall back."""
        if not self._available:
            return False
        full_key = self.key(Namespace.QUEUE, queue)
        try:
            await self.backend.zadd(full_key, member, priority)
            return True
        except Exception as e:
            log.warning("Cache enqueue failed for %s: %s", full_key, e)
            return False

    async def pop_max(self, queue: str) -> Optional[str]:
        if not self._available:
            return None
        full_key = self.key(Namespace.QUEUE, queue)
        try:
            return await self.backend.zpopmax(full_key)
        except Exception as e:
            log.warning("Cache dequeue failed for %s: %s", full_key, e)
            return None

    async def health_check(self) -> bool:
        if not self._available:
            return False
        try:
            return await self.backend.ping()
        except Exception as e:
            log.warning("Cache health check failed: %s", e)
            return False

    async def stats(self) -> dict[str, Any]:
        configured = self.backend is not None
        if not self._available:
            return {"configured": configured, "connected": False, "fallback": True}
        try:
            info = await self.backend.info()
        except Exception as e:
            log.warning("Cache stats failed: %s", e)
            return {"configured": configured, "connected": False, "fallback": True, "error": str(e)}
        return {
            "configured": configured,
            "connected": True,
            "fallback": False,
            "backend": self.backend.name,
            **info,
        }
