"""
@description 数据库模型与初始化测试
@responsibility 验证表结构、全文检索影子表和会话工厂
"""

from datetime import datetime

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError

from gallery_core.core import database
from gallery_core.models.item import Item
from gallery_core.models.view_history import ViewHistory


class TestInitDb:
    """测试数据库初始化"""

    @pytest.mark.asyncio
    async def test_tables_created(self, session_factory):
        async with session_factory() as session:
            result = await session.execute(
                text("SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name")
            )
            tables = {row[0] for row in result}

        assert {"items", "items_fts", "view_history"} <= tables

    @pytest.mark.asyncio
    async def test_item_path_unique(self, session_factory):
        """同一路径只能有一个条目"""
        async with session_factory() as session:
            session.add(Item(name="x.jpg", path="a/x.jpg", type="photo"))
            await session.commit()

            session.add(Item(name="x.jpg", path="a/x.jpg", type="photo"))
            with pytest.raises(IntegrityError):
                await session.commit()

    @pytest.mark.asyncio
    async def test_view_history_composite_key(self, session_factory):
        async with session_factory() as session:
            session.add(ViewHistory(user_id="u1", item_path="a", viewed_at=datetime.now()))
            session.add(ViewHistory(user_id="u2", item_path="a", viewed_at=datetime.now()))
            await session.commit()

            result = await session.execute(select(ViewHistory).where(ViewHistory.item_path == "a"))
            assert len(result.scalars().all()) == 2

    @pytest.mark.asyncio
    async def test_configure_database_returns_session_factory(self, tmp_path):
        """configure_database 配置全局引擎并返回会话工厂"""
        factory = database.configure_database(database.database_url_for(tmp_path / "gallery.db"))
        try:
            await database.init_db()
            assert factory is database.async_session_local
            async with factory() as session:
                result = await session.execute(text("SELECT COUNT(*) FROM items"))
                assert result.scalar_one() == 0
        finally:
            await database.dispose_db()
