"""
@description 共享键值存储接口
@responsibility 定义失败登记与缓存失效依赖的键值操作，并提供 Redis 实现
"""

from __future__ import annotations

from typing import Optional, Protocol

import redis.asyncio as redis
from loguru import logger


class KeyValueStore(Protocol):
    """永久失败登记、接口缓存失效所需的最小键值操作集合"""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None: ...

    async def scan(self, pattern: str) -> list[str]: ...

    async def delete(self, *keys: str) -> int: ...

    async def delete_pattern(self, pattern: str) -> int: ...


class RedisKeyValueStore:
    """基于 redis.asyncio 的键值存储，单键操作天然原子"""

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisKeyValueStore:
        client = redis.from_url(url, decode_responses=True)
        logger.info(f"Redis 客户端已创建: {url}")
        return cls(client)

    @property
    def client(self) -> redis.Redis:
        return self._client

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        await self._client.set(key, value, ex=ttl)

    async def scan(self, pattern: str) -> list[str]:
        return [key async for key in self._client.scan_iter(match=pattern, count=100)]

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._client.delete(*keys)

    async def delete_pattern(self, pattern: str) -> int:
        keys = await self.scan(pattern)
        return await self.delete(*keys)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception as e:
            logger.error(f"Redis 连接检查失败: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()
