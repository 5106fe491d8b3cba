"""Fixed-window rate limiting on top of the cache layer."""

from dataclasses import dataclass

from digest_engine.adapters.cache.service import CacheService, Namespace


@dataclass
class RateLimitResult:
    """
    Result of a rate limit check.
    """
    allowed: bool
    remaining: int = 0
    reset_in: float = 0.0
    limit: int = 0


class RateLimiter:
    """Count calls per key in fixed windows; open when the cache is off."""

    def __init__(self, cache: CacheService, limit: int, window_seconds: int) -> None:
        if limit < 1:
            raise ValueError("Rate limit must allow at least one call")
        if window_seconds < 1:
            raise ValueError("Rate limit window must be at least one second")
        self.cache = cache
        self.limit = limit
        self.window_seconds = window_seconds

    async def check(self, key: str) -> RateLimitResult:
        count = await self.cache.increment_with_ttl(key, self.window_seconds)
        if count is None:
            return RateLimitResult(
                allowed=True,
                remaining=self.limit,
                reset_in=float(self.window_seconds),
                limit=self.limit,
            )

        ttl = await self.cache.ttl(Namespace.RATE_LIMIT, key)
        reset_in = float(ttl) if ttl is not None and ttl > 0 else float(self.window_seconds)
        return RateLimitResult(
            allowed=count <= self.limit,
            remaining=max(0, self.limit - count),
            reset_in=reset_in,
            limit=self.limit,
        )
