"""Redis-backed persisted store.

Works with either a synchronous or an asyncio redis client; results are
awaited only when the client returns a coroutine.
"""

import asyncio
from typing import Any, Optional


class RedisStore:
    """PersistedStore on top of a redis client."""

    def __init__(self, redis_client: Any, prefix: str = "synclayer:"):
        """Initialize store.

        Args:
            redis_client: redis.Redis or redis.asyncio.Redis compatible client
            prefix: Namespace prepended to every key
        """
        self.redis = redis_client
        self.prefix = prefix

    async def _call(self, method: str, *args) -> Any:
        result = getattr(self.redis, method)(*args)
        if asyncio.iscoroutine(result):
            return await result
        return result

    async def get(self, key: str) -> Optional[bytes]:
        value = await self._call("get", self.prefix + key)
        if value is None:
            return None
        if isinstance(value, str):
            return value.encode("utf-8")
        return bytes(value)

    async def put(self, key: str, value: bytes) -> None:
        await self._call("set", self.prefix + key, value)

    async def delete(self, key: str) -> None:
        await self._call("delete", self.prefix + key)

    async def keys(self, prefix: str = "") -> list[str]:
        raw = await self._call("keys", f"{self.prefix}{prefix}*")
        keys = []
        for k in raw or []:
            if isinstance(k, bytes):
                k = k.decode("utf-8")
            keys.append(k[len(self.prefix):])
        return sorted(keys)
