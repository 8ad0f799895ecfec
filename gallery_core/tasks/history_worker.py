"""
@description 浏览历史任务处理
@responsibility 从队列接收查看事件，写入浏览历史并清理受影响的浏览列表缓存
"""

from typing import Union

from loguru import logger
from pydantic import ValidationError

from gallery_core.schemas.jobs import HistoryJob, HistoryResult
from gallery_core.services.history import ViewHistoryTracker


class HistoryJobError(ValueError):
    """任务参数无效，重试也不会成功"""

    retryable = False
    reason = "invalid_payload"


class HistoryWorker:
    """浏览历史任务处理器"""

    def __init__(self, tracker: ViewHistoryTracker):
        self._tracker = tracker

    async def process(self, job: Union[HistoryJob, dict]) -> dict:
        """
        记录一次查看

        Raises:
            HistoryJobError: 缺少 userId 或 path
            数据库异常原样抛出，由队列决定是否重试
        """
        if not isinstance(job, HistoryJob):
            try:
                job = HistoryJob.model_validate(job)
            except ValidationError as e:
                raise HistoryJobError(f"任务参数无效: {e}") from e

        cleared = await self._tracker.record_view(job.user_id, job.item_path)
        logger.debug(f"已记录查看: user {job.user_id}, path {job.item_path}")
        return HistoryResult(success=True, cleared_cache_keys=cleared).model_dump()
