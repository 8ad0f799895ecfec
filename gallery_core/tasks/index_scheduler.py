"""
@description 索引调度任务
@responsibility 监控媒体目录变化，防抖合并变更后触发增量更新或全量重建，新视频写入完成后转交优化队列
"""

import asyncio
import os
import time
from typing import Awaitable, Callable, Optional

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from gallery_core.core.config import IndexerConfig
from gallery_core.schemas.jobs import ChangeEvent
from gallery_core.services.cache_service import CacheInvalidator
from gallery_core.services.index_sync import IndexSynchronizer, IndexSyncError
from gallery_core.services.media_filter import is_video_file
from gallery_core.tasks.video_worker import TEMP_FILE_PREFIX
from gallery_core.utils.helpers import relative_to_root

VideoEnqueue = Callable[[dict], Awaitable[object]]

# 成对出现时互相抵消的变更
CANCELLING_PAIRS = {("add", "unlink"), ("addDir", "unlinkDir")}
WRITE_POLL_INTERVAL = 0.1


def consolidate_changes(changes: list[ChangeEvent]) -> list[ChangeEvent]:
    """
    合并同一路径的多次变更

    每个路径只保留最后一次事件（排在该事件出现的位置）；先新增后删除的
    成对事件直接抵消。
    """
    merged: dict[str, ChangeEvent] = {}
    for change in changes:
        existing = merged.pop(change.file_path, None)
        if existing is not None and (existing.type, change.type) in CANCELLING_PAIRS:
            continue
        merged[change.file_path] = change
    return list(merged.values())


async def wait_for_write_finish(
    path: str, stability_seconds: float, poll_interval: float = WRITE_POLL_INTERVAL
) -> bool:
    """
    等待文件写入完成：大小和修改时间连续 stability_seconds 秒不变

    Returns:
        文件已稳定返回 True；等待期间文件消失返回 False
    """
    last_seen = None
    stable_since = time.monotonic()
    while True:
        try:
            stat = os.stat(path)
        except OSError:
            return False

        current = (stat.st_size, stat.st_mtime_ns)
        now = time.monotonic()
        if current != last_seen:
            last_seen = current
            stable_since = now
        elif now - stable_since >= stability_seconds:
            return True
        await asyncio.sleep(poll_interval)


class _WatchHandler(FileSystemEventHandler):
    """watchdog 回调运行在观察者线程，事件需转回事件循环处理"""

    def __init__(self, scheduler: "IndexScheduler", loop: asyncio.AbstractEventLoop):
        self._scheduler = scheduler
        self._loop = loop

    def _emit(self, change_type: str, path: str) -> None:
        if self._scheduler.is_ignored(path):
            return
        self._loop.call_soon_threadsafe(self._scheduler.dispatch, change_type, path)

    def on_created(self, event: FileSystemEvent) -> None:
        self._emit("addDir" if event.is_directory else "add", event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._emit("unlinkDir" if event.is_directory else "unlink", event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            self._emit("unlinkDir", event.src_path)
            self._emit("addDir", event.dest_path)
        else:
            self._emit("unlink", event.src_path)
            self._emit("add", event.dest_path)


class IndexScheduler:
    """索引调度器：重建与增量更新通过同一把锁串行执行"""

    def __init__(
        self,
        synchronizer: IndexSynchronizer,
        cache: CacheInvalidator,
        photos_dir: str,
        config: Optional[IndexerConfig] = None,
        video_enqueue: Optional[VideoEnqueue] = None,
    ):
        self._synchronizer = synchronizer
        self._cache = cache
        self._photos_dir = os.path.abspath(photos_dir)
        self._config = config or IndexerConfig()
        self._video_enqueue = video_enqueue

        self._lock = asyncio.Lock()
        self._pending: dict[tuple[str, str], ChangeEvent] = {}
        self._last_change_at = 0.0
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._observer: Optional[Observer] = None
        self._dispatched: set[asyncio.Task] = set()
        self._awaiting_write: set[str] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def count_items(self) -> int:
        return await self._synchronizer.count_items()

    async def start(self, rebuild_on_start: bool = True) -> None:
        """启动调度：可选的首次全量重建、目录监控与防抖循环"""
        if self.is_running:
            logger.warning("索引调度任务已在运行中")
            return

        self._stop_event.clear()
        if self._config.watch:
            self.watch()
        self._task = asyncio.create_task(self._schedule_loop(rebuild_on_start))
        logger.info("索引调度任务已启动")

    async def stop(self) -> None:
        """停止调度，未处理的变更会被丢弃"""
        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join, 5.0)
            self._observer = None

        # 仍在等待写入完成的视频随调度一起停止
        for task in list(self._dispatched):
            task.cancel()

        if self._task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("等待索引调度任务停止超时，强制取消")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        self._task = None
        logger.info("索引调度任务已停止")

    def watch(self) -> None:
        """开始监控媒体目录（递归）"""
        if self._observer is not None:
            return
        if not os.path.isdir(self._photos_dir):
            logger.error(f"媒体目录不存在，无法监控: {self._photos_dir}")
            return
        loop = asyncio.get_running_loop()
        observer = Observer()
        observer.schedule(_WatchHandler(self, loop), self._photos_dir, recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info(f"开始监控媒体目录: {self._photos_dir}")

    def is_ignored(self, path: str) -> bool:
        """隐藏文件、系统目录和视频优化临时文件的变化不参与增量更新"""
        relative_path = relative_to_root(self._photos_dir, path)
        if relative_path is None:
            return True
        if os.path.basename(relative_path).startswith(TEMP_FILE_PREFIX):
            return True
        reserved = set(self._config.reserved_dirs)
        return any(part.startswith(".") or part in reserved for part in relative_path.split("/"))

    def dispatch(self, change_type: str, file_path: str) -> None:
        """在事件循环线程中调度 on_change"""
        task = asyncio.ensure_future(self.on_change(change_type, file_path))
        self._dispatched.add(task)
        task.add_done_callback(self._dispatched.discard)

    async def on_change(self, change_type: str, file_path: str) -> None:
        """
        处理一个文件系统事件

        新增的视频等写入完成后交给优化队列，优化完成后再由 on_video_result 加入索引
        """
        if change_type == "add" and self._video_enqueue is not None and is_video_file(file_path):
            await self._enqueue_video_when_written(file_path)
            return

        self.queue_change(change_type, file_path)

    async def _enqueue_video_when_written(self, file_path: str) -> None:
        if file_path in self._awaiting_write:
            return
        self._awaiting_write.add(file_path)
        try:
            stable = await wait_for_write_finish(
                file_path, self._config.write_stability_seconds
            )
            if not stable:
                logger.info(f"视频在写入完成前已被移除，忽略: {file_path}")
                return

            logger.info(f"检测到新视频，提交优化任务: {file_path}")
            try:
                await self._video_enqueue({"filePath": file_path})
            except Exception as e:
                logger.error(f"提交视频优化任务失败 {file_path}: {e}")
        finally:
            self._awaiting_write.discard(file_path)

    async def on_video_result(self, result: dict) -> None:
        """视频优化结果回调：成功（含跳过）后加入索引"""
        path = result.get("path")
        if not path:
            return
        if result.get("success"):
            logger.info(f"视频处理完成，加入索引: {path} ({result.get('status')})")
            self.queue_change("add", path)
        else:
            logger.error(f"视频处理失败，暂不加入索引: {path}, {result.get('error')}")

    def queue_change(self, change_type: str, file_path: str) -> None:
        change = ChangeEvent(type=change_type, file_path=file_path)
        # 同类型同路径的重复事件只保留一次，位置移到最后
        self._pending.pop((change.type, change.file_path), None)
        self._pending[(change.type, change.file_path)] = change
        self._last_change_at = time.monotonic()

    async def flush(self) -> int:
        """
        处理积压的变更

        Returns:
            增量更新应用的变更数，或全量重建处理的条目数；跳过或失败时为 0
        """
        if not self._pending:
            return 0
        if self._lock.locked():
            logger.info("索引任务正在进行中，本次变更留待下次处理")
            return 0

        async with self._lock:
            changes = list(self._pending.values())
            self._pending.clear()

            await self._cache.clear_browse_cache()

            consolidated = consolidate_changes(changes)
            if not consolidated:
                logger.debug("变更合并后为空，无需更新索引")
                return 0

            try:
                if len(consolidated) > self._config.max_incremental_changes:
                    logger.info(f"变更数量过多 ({len(consolidated)})，改为全量重建")
                    return await self._synchronizer.rebuild()
                return await self._synchronizer.apply_changes(consolidated)
            except IndexSyncError as e:
                logger.error(f"索引更新失败，变更放回队列等待下次处理: {e}")
                self._restore_pending(consolidated)
                return 0

    def _restore_pending(self, changes: list[ChangeEvent]) -> None:
        """失败的变更排回队首，处理期间新到的变更保持在其后"""
        newer = self._pending
        self._pending = {(c.type, c.file_path): c for c in changes}
        for key, change in newer.items():
            self._pending.pop(key, None)
            self._pending[key] = change
        self._last_change_at = time.monotonic()

    async def rebuild(self) -> Optional[int]:
        """
        手动触发全量重建

        Returns:
            处理的条目数；已有索引任务在进行时返回 None

        Raises:
            IndexSyncError: 重建失败
        """
        if self._lock.locked():
            logger.info("索引任务正在进行中，跳过本次重建请求")
            return None

        async with self._lock:
            await self._cache.clear_browse_cache()
            return await self._synchronizer.rebuild()

    async def _schedule_loop(self, rebuild_on_start: bool) -> None:
        """防抖主循环：最后一次变更后静默 debounce_seconds 再处理"""
        if rebuild_on_start:
            try:
                await self.rebuild()
            except IndexSyncError as e:
                logger.error(f"启动时重建索引失败: {e}")

        debounce = self._config.debounce_seconds
        poll_interval = min(1.0, debounce)
        while not self._stop_event.is_set():
            try:
                quiet_for = time.monotonic() - self._last_change_at
                if self._pending and quiet_for >= debounce:
                    await self.flush()
            except Exception as e:
                logger.error(f"索引调度循环出错: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=poll_interval)
            except asyncio.TimeoutError:
                pass
