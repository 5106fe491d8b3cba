"""In-process cache backend for local runs and tests."""

import fnmatch
import itertools
import math
import time
from typing import Any, Callable, Optional

from digest_engine.core.interfaces import CacheBackend


def _redis_to_fnmatch(pattern: str) -> str:
    """Rewrite Redis backslash escapes as fnmatch one-character classes."""
    out = []
    chars = iter(pattern)
    for c in chars:
        if c == "\\":
            escaped = next(chars, "\\")
            out.append(f"[{escaped}]" if escaped in "*?[]\\" else escaped)
        else:
            out.append(c)
    return "".join(out)


class MemoryBackend(CacheBackend):
    """Dict-backed store with Redis-like expiry and sorted-set semantics.

    Single event loop only; every method completes without awaiting, so
    each call is atomic with respect to other coroutines.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._values: dict[str, tuple[str, Optional[float]]] = {}
        self._zsets: dict[str, dict[str, tuple[float, int]]] = {}
        self._seq = itertools.count()

    def _live(self, key: str) -> Optional[tuple[str, Optional[float]]]:
        entry = self._values.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._values[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl: int) -> None:
        expires_at = self._clock() + ttl if ttl > 0 else None
        self._values[key] = (value, expires_at)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                del self._values[key]
                removed += 1
            if self._zsets.pop(key, None) is not None:
                removed += 1
        return removed

    async def keys(self, pattern: str) -> list[str]:
        names = [k for k in list(self._values) if self._live(k) is not None]
        names.extend(k for k, members in self._zsets.items() if members)
        translated = _redis_to_fnmatch(pattern)
        return sorted(k for k in names if fnmatch.fnmatchcase(k, translated))

    async def incr_with_ttl(self, key: str, ttl: int) -> int:
        entry = self._live(key)
        if entry is None:
            self._values[key] = ("1", self._clock() + ttl)
            return 1
        value, expires_at = entry
        count = int(value) + 1
        self._values[key] = (str(count), expires_at)
        return count

    async def ttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return math.ceil(entry[1] - self._clock())

    async def zadd(self, key: str, member: str, score: float) -> None:
        self._zsets.setdefault(key, {})[member] = (score, next(self._seq))

    async def zpopmax(self, key: str) -> Optional[str]:
        members = self._zsets.get(key)
        if not members:
            return None
        # Highest score first; earlier insertion wins ties
        member = max(members, key=lambda m: (members[m][0], -members[m][1]))
        del members[member]
        return member

    async def ping(self) -> bool:
        return True

    async def info(self) -> dict[str, Any]:
        return {
            "keys": sum(1 for k in list(self._values) if self._live(k) is not None),
            "queues": {k: len(v) for k, v in self._zsets.items()},
        }
