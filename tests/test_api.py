"""
@description 系统接口测试
@responsibility 验证状态查询和手动重建接口
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from gallery_core.api import system
from gallery_core.api.system import init_system_router
from gallery_core.services.index_sync import IndexSyncError
from gallery_core.services.transform_cache import LRUCache


@pytest.fixture
def mock_scheduler():
    scheduler = MagicMock()
    scheduler.is_running = True
    scheduler.is_busy = False
    scheduler.pending_count = 2
    scheduler.count_items = AsyncMock(return_value=42)
    scheduler.rebuild = AsyncMock(return_value=42)
    return scheduler


@pytest.fixture
def mock_consumer():
    consumer = MagicMock()
    consumer.queue_name = "ai-caption-queue"
    consumer.consumer_name = "ai-caption-queue-1-0"
    consumer.is_running = True
    return consumer


@pytest.fixture
def test_app(mock_scheduler, mock_consumer):
    app = FastAPI()
    cache = LRUCache(max_size=4)
    cache.set("k", b"v")
    init_system_router(mock_scheduler, [mock_consumer], cache)
    app.include_router(system.router, prefix="/api", tags=["system"])
    return app


@pytest_asyncio.fixture
async def client(test_app):
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestStatus:
    """测试状态查询"""

    @pytest.mark.asyncio
    async def test_get_status(self, client):
        response = await client.get("/api/status")

        assert response.status_code == 200
        body = response.json()
        assert body["code"] == 0
        data = body["data"]
        assert data["scheduler_running"] is True
        assert data["index_busy"] is False
        assert data["pending_changes"] == 2
        assert data["indexed_items"] == 42
        assert data["consumers"] == [
            {"queue": "ai-caption-queue", "consumer": "ai-caption-queue-1-0", "running": True}
        ]
        assert data["transform_cache"] == {"size": 1, "max_size": 4, "usage": 25}

    @pytest.mark.asyncio
    async def test_status_tolerates_count_failure(self, client, mock_scheduler):
        """索引查询失败时仍返回其他状态"""
        mock_scheduler.count_items = AsyncMock(side_effect=RuntimeError("db locked"))

        response = await client.get("/api/status")

        assert response.status_code == 200
        assert response.json()["data"]["indexed_items"] is None


class TestRebuild:
    """测试手动重建"""

    @pytest.mark.asyncio
    async def test_rebuild(self, client, mock_scheduler):
        response = await client.post("/api/index/rebuild")

        assert response.status_code == 200
        assert response.json()["data"] == {"started": True, "count": 42}
        mock_scheduler.rebuild.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rebuild_skipped_when_busy(self, client, mock_scheduler):
        mock_scheduler.rebuild = AsyncMock(return_value=None)

        response = await client.post("/api/index/rebuild")

        assert response.json()["data"] == {"started": False, "count": None}

    @pytest.mark.asyncio
    async def test_rebuild_failure(self, client, mock_scheduler):
        mock_scheduler.rebuild = AsyncMock(side_effect=IndexSyncError("重建索引失败"))

        response = await client.post("/api/index/rebuild")

        assert response.status_code == 500
