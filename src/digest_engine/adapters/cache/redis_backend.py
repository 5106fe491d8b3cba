"""Redis cache backend."""

from typing import Any, Optional

import redis.asyncio as redis

from digest_engine.core.interfaces import CacheBackend


class RedisBackend(CacheBackend):
    """Cache backend over a single Redis database."""

    name = "redis"

    def __init__(self, url: str, socket_timeout: float = 2.0) -> None:
        self.url = url
        self._client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        if ttl > 0:
            await self._client.set(key, value, ex=ttl)
        else:
            await self._client.set(key, value)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._client.delete(*keys)

    async def keys(self, pattern: str) -> list[str]:
        # SCAN instead of KEYS so large keyspaces don't block the server
        return [key async for key in self._client.scan_iter(match=pattern)]

    async def incr_with_ttl(self, key: str, ttl: int) -> int:
        count = await self._client.incr(key)
        if count == 1:
            await self._client.expire(key, ttl)
        return count

    async def ttl(self, key: str) -> int:
        return await self._client.ttl(key)

    async def zadd(self, key: str, member: str, score: float) -> None:
        await self._client.zadd(key, {member: score})

    async def zpopmax(self, key: str) -> Optional[str]:
        popped = await self._client.zpopmax(key)
        if not popped:
            return None
        member, _score = popped[0]
        return member

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def info(self) -> dict[str, Any]:
        memory = await self._client.info("memory")
        keyspace = await self._client.info("keyspace")
        return {
            "used_memory": memory.get("used_memory_human"),
            "keyspace": keyspace,
        }

    async def close(self) -> None:
        await self._client.aclose()
