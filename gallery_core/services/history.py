"""
@description 浏览历史服务
@responsibility 记录用户对条目及其所有上级目录的查看时间，并清理受影响的浏览列表缓存
"""

from datetime import datetime

from loguru import logger
from sqlalchemy import DateTime, bindparam, text

from gallery_core.services.cache_service import CacheInvalidator
from gallery_core.utils.helpers import ancestor_paths, parent_directory

UPSERT_VIEW_SQL = text("""
    INSERT INTO view_history (user_id, item_path, viewed_at)
    VALUES (:user_id, :item_path, :viewed_at)
    ON CONFLICT(user_id, item_path) DO UPDATE SET
        viewed_at = excluded.viewed_at
""").bindparams(bindparam("viewed_at", type_=DateTime()))


class ViewHistoryTracker:
    """浏览历史记录器"""

    def __init__(self, session_factory, cache: CacheInvalidator):
        self._session_factory = session_factory
        self._cache = cache

    async def record_view(self, user_id: str, item_path: str) -> int:
        """
        记录一次查看

        条目自身和每一级上级目录都会写入查看时间，随后清除这些路径的父目录
        对应的浏览列表缓存。

        Args:
            user_id: 用户 ID
            item_path: 相对媒体根目录的条目路径

        Returns:
            被清除的缓存键数量
        """
        if not user_id or not item_path:
            return 0

        paths_to_update = ancestor_paths(item_path)
        if not paths_to_update:
            return 0

        viewed_at = datetime.now()
        async with self._session_factory() as session:
            try:
                for path in paths_to_update:
                    await session.execute(
                        UPSERT_VIEW_SQL,
                        {"user_id": user_id, "item_path": path, "viewed_at": viewed_at},
                    )
                await session.commit()
            except Exception as e:
                logger.error(f"更新查看时间失败 for user {user_id}, path {item_path}: {e}")
                try:
                    await session.rollback()
                except Exception as rb_error:
                    logger.error(f"查看时间更新事务回滚失败: {rb_error}")
                raise

        logger.debug(f"批量更新了 {len(paths_to_update)} 个路径的查看时间 for user {user_id}")

        # dict 去重并保持顺序
        parent_dirs = list(dict.fromkeys(parent_directory(p) for p in paths_to_update))
        return await self._cache.invalidate_browse(user_id, parent_dirs)

    async def get_viewed_at(self, user_id: str, item_path: str):
        """查询某路径的最近查看时间，未查看返回 None"""
        async with self._session_factory() as session:
            result = await session.execute(
                text(
                    "SELECT viewed_at FROM view_history "
                    "WHERE user_id = :user_id AND item_path = :item_path"
                ).columns(viewed_at=DateTime()),
                {"user_id": user_id, "item_path": item_path},
            )
            return result.scalar_one_or_none()
