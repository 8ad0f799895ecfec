"""
@description 视频优化任务处理
@responsibility 检测 MP4 是否已 faststart，必要时调用 ffmpeg 重新封装；累计失败达到上限后标记永久失败
"""

import asyncio
import os
import threading
from typing import Union

from loguru import logger
from pydantic import ValidationError

from gallery_core.schemas.jobs import VideoJob, VideoResult
from gallery_core.services.cache_service import FailureRegistry

HEADER_WINDOW = 64 * 1024
MAX_VIDEO_RETRIES = 3
PERMANENT_FAILURE_TTL = 3600 * 24 * 7
# ffmpeg 输出的临时文件与原视频同目录
TEMP_FILE_PREFIX = "temp_opt_"


def is_optimized(file_path: str) -> bool:
    """
    读取文件头判断 moov 是否位于 mdat 之前

    文件过短无法判断时视为已优化；读取失败视为未优化
    """
    try:
        with open(file_path, "rb") as f:
            header = f.read(HEADER_WINDOW)
    except OSError as e:
        logger.error(f"检查视频优化状态失败 {file_path}: {e}")
        return False

    if len(header) < 4:
        return True

    moov_position = header.find(b"moov")
    mdat_position = header.find(b"mdat")
    return moov_position != -1 and (mdat_position == -1 or moov_position < mdat_position)


class FailureCounter:
    """按路径累计失败次数（进程内存，加锁）"""

    def __init__(self):
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def increment(self, key: str) -> int:
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + 1
            return self._counts[key]

    def clear(self, key: str) -> None:
        with self._lock:
            self._counts.pop(key, None)

    def get(self, key: str) -> int:
        with self._lock:
            return self._counts.get(key, 0)


class VideoOptimizer:
    """视频优化任务处理器"""

    def __init__(
        self,
        registry: FailureRegistry,
        ffmpeg_bin: str = "ffmpeg",
        max_retries: int = MAX_VIDEO_RETRIES,
        failure_ttl: int = PERMANENT_FAILURE_TTL,
    ):
        self._registry = registry
        self._ffmpeg_bin = ffmpeg_bin
        self._max_retries = max_retries
        self._failure_ttl = failure_ttl
        self.failure_counts = FailureCounter()

    async def process(self, job: Union[VideoJob, dict]) -> dict:
        """
        处理单个视频任务，结果总是返回给调用方（不抛出）

        Returns:
            {"success", "path", "status"} 或 {"success": False, "path", "error"}
        """
        if not isinstance(job, VideoJob):
            try:
                job = VideoJob.model_validate(job)
            except ValidationError as e:
                logger.error(f"视频任务参数无效: {e}")
                return self._result(False, "", error=f"任务参数无效: {e}")
        file_path = job.file_path

        # 1. 已被标记为永久失败则直接跳过，不做任何 I/O
        if await self._registry.is_failed(file_path):
            logger.warning(f"视频已被标记为永久失败，跳过: {file_path}")
            return self._result(True, file_path, status="skipped_permanent_failure")

        if await asyncio.to_thread(is_optimized, file_path):
            logger.info(f"视频已优化，跳过: {file_path}")
            return self._result(True, file_path, status="skipped_optimized")

        logger.info(f"视频需要优化，开始处理: {file_path}")
        result = await self.optimize(file_path)

        if result["success"]:
            if result.get("status") == "optimized":
                logger.info(f"成功优化: {file_path}")
            self.failure_counts.clear(file_path)
            return result

        # 2. 处理失败，增加失败计数
        current_failures = self.failure_counts.increment(file_path)
        logger.error(f"优化失败 (第 {current_failures} 次): {file_path}, {result['error']}")

        if current_failures >= self._max_retries:
            # 3. 达到最大次数，标记为永久失败，只影响之后提交的任务
            logger.error(f"视频达到最大重试次数，标记为永久失败: {file_path}")
            await self._registry.mark_failed(file_path, self._failure_ttl)
            self.failure_counts.clear(file_path)

        return result

    async def optimize(self, file_path: str) -> dict:
        target_dir = os.path.dirname(file_path)
        temp_name = f"{TEMP_FILE_PREFIX}{os.path.basename(file_path)}"
        temp_path = os.path.join(target_dir, temp_name)

        # 预检测：目录不可写（只读挂载）时直接跳过，避免无意义的重试
        if not os.access(target_dir, os.W_OK):
            logger.warning(f"视频目录不可写，跳过优化(只读文件系统): {target_dir}")
            return self._result(True, file_path, status="skipped_readonly")

        try:
            await self._run_remux(file_path, temp_path)
            if not os.path.isfile(temp_path) or os.path.getsize(temp_path) == 0:
                raise RuntimeError("ffmpeg 未生成有效的输出文件")
            os.replace(temp_path, file_path)
        except Exception as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            return self._result(False, file_path, error=str(e) or "未知 ffmpeg 错误")

        return self._result(True, file_path, status="optimized")

    async def _run_remux(self, source: str, target: str) -> None:
        """调用 ffmpeg 无损重新封装，把 moov 移到文件头"""
        process = await asyncio.create_subprocess_exec(
            self._ffmpeg_bin,
            "-y",
            "-v",
            "error",
            "-i",
            source,
            "-c",
            "copy",
            "-movflags",
            "+faststart",
            target,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise RuntimeError(message or f"ffmpeg 退出码 {process.returncode}")

    @staticmethod
    def _result(success: bool, path: str, **fields) -> dict:
        return VideoResult(success=success, path=path, **fields).model_dump(exclude_none=True)
