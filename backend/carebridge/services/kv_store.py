"""
CareBridge Backend — Key-Value Store
======================================

What:  Expiring key-value storage for signing OTPs.
How:   Thin async wrapper over redis.asyncio; expiry is Redis' native TTL.
"""

import logging
from typing import Optional

import redis.asyncio as redis

from carebridge.config import settings

logger = logging.getLogger(__name__)


class RedisKeyValueStore:
    def __init__(self, url: Optional[str] = None):
        self._url = url or settings.redis_url
        self._client: Optional[redis.Redis] = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            # Lazy so importing the module never opens a connection
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.set(key, value, ex=ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


kv_store = RedisKeyValueStore()
