"""
@description Redis 键值存储测试
@responsibility 验证 RedisKeyValueStore 的读写、TTL、模式删除和连接检查
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from gallery_core.services.kv_store import RedisKeyValueStore


@pytest.fixture
def redis_client():
    client = MagicMock()
    client.get = AsyncMock(return_value="1")
    client.set = AsyncMock()
    client.delete = AsyncMock(side_effect=lambda *keys: len(keys))
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()

    async def scan_iter(match=None, count=None):
        for key in ("route_cache:u1:/api/browse/a", "route_cache:u1:/api/browse/b"):
            yield key

    client.scan_iter = MagicMock(side_effect=scan_iter)
    return client


class TestRedisKeyValueStore:
    """测试 Redis 键值存储"""

    @pytest.mark.asyncio
    async def test_get_and_set_with_ttl(self, redis_client):
        """set 的 TTL 以秒为单位透传给 Redis"""
        store = RedisKeyValueStore(redis_client)

        await store.set("video_failed_permanently:/p/v.mp4", "1", ttl=60)

        redis_client.set.assert_awaited_once_with(
            "video_failed_permanently:/p/v.mp4", "1", ex=60
        )
        assert await store.get("video_failed_permanently:/p/v.mp4") == "1"

    @pytest.mark.asyncio
    async def test_delete_pattern_scans_then_deletes(self, redis_client):
        store = RedisKeyValueStore(redis_client)

        deleted = await store.delete_pattern("route_cache:*:/api/browse/*")

        redis_client.scan_iter.assert_called_once_with(
            match="route_cache:*:/api/browse/*", count=100
        )
        redis_client.delete.assert_awaited_once_with(
            "route_cache:u1:/api/browse/a", "route_cache:u1:/api/browse/b"
        )
        assert deleted == 2

    @pytest.mark.asyncio
    async def test_delete_without_keys(self, redis_client):
        """没有键时不访问 Redis"""
        store = RedisKeyValueStore(redis_client)
        assert await store.delete() == 0
        redis_client.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_ping_failure_returns_false(self, redis_client):
        redis_client.ping = AsyncMock(side_effect=ConnectionError("refused"))
        store = RedisKeyValueStore(redis_client)
        assert await store.ping() is False

    @pytest.mark.asyncio
    async def test_close(self, redis_client):
        store = RedisKeyValueStore(redis_client)
        await store.close()
        redis_client.aclose.assert_awaited_once()
