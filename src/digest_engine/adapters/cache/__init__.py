"""Cache layer adapters."""

from digest_engine.adapters.cache.memory_backend import MemoryBackend
from digest_engine.adapters.cache.rate_limit import RateLimiter, RateLimitResult
from digest_engine.adapters.cache.service import CacheService, Namespace

__all__ = ["CacheService", "MemoryBackend", "Namespace", "RateLimiter", "RateLimitResult"]
