"""
@description AI 描述任务处理
@responsibility 压缩图片（带 LRU 缓存）、调用视觉模型生成描述，失败时清理缓存并分类错误
"""

import asyncio
import base64
import io
from typing import Optional, Union

from loguru import logger
from PIL import Image
from pydantic import ValidationError

from gallery_core.core.config import AIConfig
from gallery_core.schemas.jobs import CaptionJob, CaptionResult
from gallery_core.services.transform_cache import LRUCache, cleanup_if_needed
from gallery_core.services.vision_client import CaptionError, VisionClient
from gallery_core.utils.helpers import resolve_under_root

MAX_WIDTH = 1024
JPEG_QUALITY = 70


def compress_image(path: str, max_width: int = MAX_WIDTH, quality: int = JPEG_QUALITY) -> bytes:
    """缩小到最大宽度（不放大）并转为 JPEG"""
    with Image.open(path) as img:
        img = img.convert("RGB")
        if img.width > max_width:
            height = max(1, round(img.height * max_width / img.width))
            img = img.resize((max_width, height), Image.Resampling.LANCZOS)
        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=quality)
        return buffer.getvalue()


class CaptionWorker:
    """AI 描述任务处理器"""

    def __init__(
        self,
        photos_dir: str,
        cache: LRUCache,
        client: VisionClient,
        defaults: Optional[AIConfig] = None,
    ):
        self._photos_dir = photos_dir
        self._cache = cache
        self._client = client
        self._defaults = defaults or AIConfig()

    @staticmethod
    def cache_key(image_abs_path: str) -> str:
        return f"{image_abs_path}_{MAX_WIDTH}_{JPEG_QUALITY}"

    async def process(self, job: Union[CaptionJob, dict]) -> dict:
        """
        处理单个描述任务

        Returns:
            {"success": True, "caption": ...}

        Raises:
            CaptionError: 失败原因见 CaptionError.reason
        """
        if not isinstance(job, CaptionJob):
            try:
                job = CaptionJob.model_validate(job)
            except ValidationError as e:
                raise CaptionError(CaptionError.INVALID_CONFIG, f"任务参数无效: {e}") from e

        ai = job.ai_config
        url = ai.url or self._defaults.url
        key = ai.key or self._defaults.key
        if not url or not key:
            raise CaptionError(CaptionError.INVALID_CONFIG, "AI 服务配置不完整或未提供")

        image_abs_path = resolve_under_root(self._photos_dir, job.image_path)
        if image_abs_path is None:
            raise CaptionError(
                CaptionError.INVALID_CONFIG, f"图片路径不在媒体目录内: {job.image_path}"
            )

        cache_key = self.cache_key(image_abs_path)
        try:
            image_bytes = await self._load_image(image_abs_path, cache_key)
            image_base64 = base64.b64encode(image_bytes).decode("ascii")
            caption = await self._client.describe_image(
                base_url=url,
                api_key=key,
                model=ai.model or self._defaults.model,
                prompt=ai.prompt or self._defaults.prompt,
                image_base64=image_base64,
            )
        except Exception:
            # 失败时移除缓存项，避免错误的压缩结果影响后续重试
            if self._cache.delete(cache_key):
                logger.debug(f"清理失败的缓存项: {cache_key}")
            raise

        logger.info(f"成功生成描述: {job.image_path}")
        return CaptionResult(success=True, caption=caption).model_dump()

    async def _load_image(self, image_abs_path: str, cache_key: str) -> bytes:
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.debug(f"使用缓存的图片处理结果: {image_abs_path}")
            return cached

        try:
            image_bytes = await asyncio.to_thread(compress_image, image_abs_path)
        except Exception as e:
            raise CaptionError(
                CaptionError.COMPRESSION_FAILED, f"图片压缩失败: {image_abs_path}"
            ) from e

        self._cache.set(cache_key, image_bytes)
        logger.debug(f"图片处理结果已缓存: {image_abs_path} (缓存大小: {self._cache.size()})")
        return image_bytes

    def maintain_cache(self) -> None:
        """定期调用：输出缓存统计，使用率过高时清理"""
        stats = self._cache.get_stats()
        logger.info(
            f"AI Worker 缓存统计: {stats['size']}/{stats['max_size']} ({stats['usage']}% 使用率)"
        )
        cleanup_if_needed(self._cache)
