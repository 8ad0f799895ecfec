"""
@description 浏览历史服务测试
@responsibility 验证上级路径写入、重复查看更新和浏览缓存失效
"""

import pytest
from sqlalchemy import text

from gallery_core.services.cache_service import CacheInvalidator
from gallery_core.services.history import ViewHistoryTracker


@pytest.fixture
def tracker(session_factory, kv_store):
    return ViewHistoryTracker(session_factory, CacheInvalidator(kv_store, "route_cache"))


async def _history_paths(session_factory, user_id: str) -> list[str]:
    async with session_factory() as session:
        result = await session.execute(
            text("SELECT item_path FROM view_history WHERE user_id = :u ORDER BY item_path"),
            {"u": user_id},
        )
        return [row[0] for row in result]


class TestRecordView:
    """测试记录查看"""

    @pytest.mark.asyncio
    async def test_record_view_writes_all_ancestors(self, tracker, session_factory):
        """条目及每一级上级目录都写入查看时间"""
        await tracker.record_view("u1", "x/y/z.jpg")

        assert await _history_paths(session_factory, "u1") == ["x", "x/y", "x/y/z.jpg"]

    @pytest.mark.asyncio
    async def test_repeated_view_updates_timestamp(self, tracker, session_factory):
        """重复查看只更新时间，不产生新行"""
        await tracker.record_view("u1", "x/y.jpg")
        first = await tracker.get_viewed_at("u1", "x/y.jpg")

        await tracker.record_view("u1", "x/y.jpg")
        second = await tracker.get_viewed_at("u1", "x/y.jpg")

        assert await _history_paths(session_factory, "u1") == ["x", "x/y.jpg"]
        assert second >= first

    @pytest.mark.asyncio
    async def test_invalidates_parent_browse_listings(self, tracker, kv_store):
        """清除各级父目录浏览列表缓存，其他用户和命名空间不受影响"""
        await kv_store.set("route_cache:u1:/api/browse/", "root")
        await kv_store.set("route_cache:u1:/api/browse/x?page=2", "x")
        await kv_store.set("route_cache:u1:/api/browse/x/y", "xy")
        await kv_store.set("route_cache:u2:/api/browse/x", "other user")
        await kv_store.set("other_ns:u1:/api/browse/x", "other namespace")

        deleted = await tracker.record_view("u1", "x/y/z.jpg")

        assert deleted == 3
        assert set(kv_store.data) == {
            "route_cache:u2:/api/browse/x",
            "other_ns:u1:/api/browse/x",
        }

    @pytest.mark.asyncio
    async def test_top_level_item_clears_root_listing(self, tracker, kv_store):
        """顶层条目只影响根目录浏览列表及其后代"""
        await kv_store.set("route_cache:u1:/api/browse/", "root")
        await kv_store.set("route_cache:u1:/api/browse/?sort=name", "root sorted")

        deleted = await tracker.record_view("u1", "top.jpg")

        assert deleted == 2
        assert kv_store.data == {}

    @pytest.mark.asyncio
    async def test_empty_arguments_are_ignored(self, tracker, session_factory):
        """缺少用户或路径时不写入"""
        assert await tracker.record_view("", "x.jpg") == 0
        assert await tracker.record_view("u1", "") == 0
        assert await _history_paths(session_factory, "u1") == []

    @pytest.mark.asyncio
    async def test_get_viewed_at_unknown(self, tracker):
        assert await tracker.get_viewed_at("u1", "never.jpg") is None
