"""
@description 系统状态接口
@responsibility 查询索引调度与队列消费者的运行状态，手动触发索引重建
"""

from typing import TYPE_CHECKING, Optional

from fastapi import APIRouter, HTTPException
from loguru import logger

from gallery_core.schemas.api import (
    ApiResponse,
    CacheStats,
    ConsumerStatus,
    RebuildResponse,
    StatusResponse,
    success_response,
)
from gallery_core.services.index_sync import IndexSyncError

if TYPE_CHECKING:
    from gallery_core.services.transform_cache import LRUCache
    from gallery_core.tasks.index_scheduler import IndexScheduler
    from gallery_core.tasks.queue_consumer import QueueConsumer

router = APIRouter()

_scheduler: Optional["IndexScheduler"] = None
_consumers: list["QueueConsumer"] = []
_transform_cache: Optional["LRUCache"] = None


def init_system_router(
    scheduler: "IndexScheduler",
    consumers: list["QueueConsumer"],
    transform_cache: Optional["LRUCache"] = None,
):
    global _scheduler, _consumers, _transform_cache
    _scheduler = scheduler
    _consumers = list(consumers)
    _transform_cache = transform_cache


@router.get("/status", response_model=ApiResponse[StatusResponse])
async def get_status():
    indexed_items = None
    if _scheduler is not None:
        try:
            indexed_items = await _scheduler.count_items()
        except Exception as e:
            logger.warning(f"查询索引条目数失败: {e}")

    return success_response(
        data=StatusResponse(
            scheduler_running=_scheduler.is_running if _scheduler else False,
            index_busy=_scheduler.is_busy if _scheduler else False,
            pending_changes=_scheduler.pending_count if _scheduler else 0,
            indexed_items=indexed_items,
            consumers=[
                ConsumerStatus(queue=c.queue_name, consumer=c.consumer_name, running=c.is_running)
                for c in _consumers
            ],
            transform_cache=(
                CacheStats(**_transform_cache.get_stats()) if _transform_cache else None
            ),
        ),
        message="获取系统状态成功",
    )


@router.post("/index/rebuild", response_model=ApiResponse[RebuildResponse])
async def rebuild_index():
    if _scheduler is None:
        raise HTTPException(status_code=503, detail="索引调度未初始化")

    try:
        count = await _scheduler.rebuild()
    except IndexSyncError as e:
        raise HTTPException(status_code=500, detail=str(e))

    if count is None:
        return success_response(
            data=RebuildResponse(started=False), message="索引任务正在进行中，已跳过"
        )
    return success_response(
        data=RebuildResponse(started=True, count=count), message="索引重建完成"
    )
