"""
@description 缓存失效与永久失败登记
@responsibility 管理浏览列表缓存的按目录失效与全量清理，以及任务主体的永久失败标记
"""

from typing import Iterable

from loguru import logger

from gallery_core.services.kv_store import KeyValueStore
from gallery_core.utils.helpers import escape_glob

FAILURE_KEY_PREFIX = "video_failed_permanently:"
BROWSE_ROUTE = "/api/browse/"


class FailureRegistry:
    """永久失败登记：键存在表示该主体不再重试，过期后自动恢复"""

    def __init__(self, store: KeyValueStore, prefix: str = FAILURE_KEY_PREFIX):
        self._store = store
        self._prefix = prefix

    def key_for(self, subject: str) -> str:
        return f"{self._prefix}{subject}"

    async def is_failed(self, subject: str) -> bool:
        return bool(await self._store.get(self.key_for(subject)))

    async def mark_failed(self, subject: str, ttl: int) -> None:
        await self._store.set(self.key_for(subject), "1", ttl=ttl)
        logger.warning(f"已标记为永久失败 ({ttl} 秒): {subject}")

    async def clear(self, subject: str) -> None:
        await self._store.delete(self.key_for(subject))


class CacheInvalidator:
    """接口响应缓存失效"""

    def __init__(self, store: KeyValueStore, namespace: str = "route_cache"):
        self._store = store
        self._namespace = namespace

    def browse_pattern(self, user_id: str, directory: str) -> str:
        """某用户某目录浏览列表的缓存键模式"""
        return (
            f"{escape_glob(self._namespace)}:{escape_glob(user_id)}"
            f":{BROWSE_ROUTE}{escape_glob(directory)}*"
        )

    def all_browse_pattern(self) -> str:
        """所有用户全部浏览列表的缓存键模式"""
        return f"{escape_glob(self._namespace)}:*:{BROWSE_ROUTE}*"

    async def invalidate_browse(self, user_id: str, directories: Iterable[str]) -> int:
        """
        清除指定目录的浏览列表缓存

        Returns:
            删除的缓存键数量
        """
        keys_to_clear: set[str] = set()
        for directory in directories:
            keys_to_clear.update(
                await self._store.scan(self.browse_pattern(user_id, directory))
            )

        if not keys_to_clear:
            return 0

        deleted = await self._store.delete(*sorted(keys_to_clear))
        logger.info(f"清除了 {len(keys_to_clear)} 个相关浏览缓存键 (用户 {user_id})")
        return deleted

    async def clear_browse_cache(self) -> int:
        """文件系统变化后清除所有用户的浏览列表缓存，失败只记录日志"""
        try:
            deleted = await self._store.delete_pattern(self.all_browse_pattern())
        except Exception as e:
            logger.error(f"清理浏览缓存失败: {e}")
            return 0
        if deleted:
            logger.info(f"成功清除了 {deleted} 个匹配的缓存。")
        return deleted
