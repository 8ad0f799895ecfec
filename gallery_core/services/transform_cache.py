"""
@description 图片处理结果缓存
@responsibility 进程内有界 LRU 缓存，保存压缩后的图片字节，仅作性能优化
"""

import threading
from typing import Optional

import cachetools
from loguru import logger


class LRUCache:
    """线程安全的 LRU 缓存，get 和重复 set 都会刷新访问顺序"""

    def __init__(self, max_size: int = 50):
        if max_size <= 0:
            raise ValueError("max_size 必须为正整数")
        self.max_size = max_size
        self._data: cachetools.LRUCache = cachetools.LRUCache(maxsize=max_size)
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            if key not in self._data and len(self._data) >= self.max_size:
                oldest_key, _ = self._data.popitem()
                logger.debug(f"LRU 缓存清理: 删除最久未使用的缓存项: {oldest_key}")
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._data)

    def trim(self, count: int) -> int:
        """按访问顺序淘汰最久未使用的 count 项，返回实际淘汰数量"""
        removed = 0
        with self._lock:
            while removed < count and self._data:
                self._data.popitem()
                removed += 1
        return removed

    def get_stats(self) -> dict:
        with self._lock:
            size = len(self._data)
        return {
            "size": size,
            "max_size": self.max_size,
            "usage": round(size / self.max_size * 100),
        }


def cleanup_if_needed(cache: LRUCache, threshold: int = 80) -> int:
    """使用率超过阈值时清理一半缓存"""
    stats = cache.get_stats()
    if stats["usage"] <= threshold:
        return 0

    logger.info(f"缓存使用率较高 ({stats['usage']}%)，执行清理...")
    removed = cache.trim(stats["size"] // 2)
    logger.info(f"缓存清理完成，清理了 {removed} 个项目")
    return removed
