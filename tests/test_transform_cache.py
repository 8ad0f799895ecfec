"""
@description 图片处理缓存测试
@responsibility 验证 LRU 淘汰顺序、访问刷新和使用率清理
"""

import threading

import pytest

from gallery_core.services.transform_cache import LRUCache, cleanup_if_needed


class TestLRUCache:
    """测试 LRU 缓存"""

    def test_evicts_least_recently_used(self):
        """超过容量时淘汰最久未使用的项"""
        cache = LRUCache(max_size=3)
        for key in ("a", "b", "c", "d"):
            cache.set(key, key.encode())

        assert cache.get("a") is None
        assert cache.size() == 3

    def test_get_refreshes_order(self):
        """get 会刷新访问顺序，使该项免于下一次淘汰"""
        cache = LRUCache(max_size=3)
        for key in ("a", "b", "c"):
            cache.set(key, key.encode())

        assert cache.get("a") == b"a"
        cache.set("d", b"d")

        assert cache.get("a") is not None
        assert cache.get("b") is None

    def test_set_existing_key_refreshes_and_updates(self):
        """重复 set 更新值并刷新顺序，不增加容量"""
        cache = LRUCache(max_size=2)
        cache.set("a", b"1")
        cache.set("b", b"2")
        cache.set("a", b"3")
        cache.set("c", b"4")

        assert cache.get("a") == b"3"
        assert cache.get("b") is None
        assert cache.size() == 2

    def test_delete_and_clear(self):
        cache = LRUCache(max_size=2)
        cache.set("a", b"1")
        assert cache.delete("a") is True
        assert cache.delete("a") is False
        cache.set("b", b"2")
        cache.clear()
        assert cache.size() == 0
        assert cache.get("b") is None

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            LRUCache(max_size=0)

    def test_stats(self):
        cache = LRUCache(max_size=4)
        cache.set("a", b"1")
        assert cache.get_stats() == {"size": 1, "max_size": 4, "usage": 25}

    def test_concurrent_access_keeps_bound(self):
        """多线程并发写入时容量上限不被突破"""
        cache = LRUCache(max_size=10)

        def writer(prefix: str):
            for i in range(200):
                cache.set(f"{prefix}{i}", b"x")
                cache.get(f"{prefix}{i // 2}")

        threads = [threading.Thread(target=writer, args=(p,)) for p in "abcd"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cache.size() == 10


class TestCleanupIfNeeded:
    """测试使用率清理"""

    def test_trims_half_when_usage_high(self):
        cache = LRUCache(max_size=10)
        for i in range(9):
            cache.set(str(i), b"x")

        removed = cleanup_if_needed(cache, threshold=80)

        assert removed == 4
        assert cache.size() == 5
        assert cache.get("0") is None
        assert cache.get("8") is not None

    def test_no_cleanup_below_threshold(self):
        cache = LRUCache(max_size=10)
        for i in range(8):
            cache.set(str(i), b"x")
        assert cleanup_if_needed(cache, threshold=80) == 0
        assert cache.size() == 8
