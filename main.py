"""
@description FastAPI 应用入口
@responsibility 初始化配置、数据库与 Redis，启动索引调度和队列消费者（AI 描述、视频优化、浏览历史），提供健康检查
"""

import asyncio
import os
from contextlib import asynccontextmanager
from functools import partial
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from gallery_core.api import system
from gallery_core.api.system import init_system_router
from gallery_core.core.config import load_config
from gallery_core.core.database import configure_database, database_url_for, dispose_db, init_db
from gallery_core.core.log_config import setup_logging
from gallery_core.schemas.api import ApiResponse, success_response
from gallery_core.services.cache_service import CacheInvalidator, FailureRegistry
from gallery_core.services.history import ViewHistoryTracker
from gallery_core.services.index_sync import IndexSynchronizer
from gallery_core.services.kv_store import RedisKeyValueStore
from gallery_core.services.transform_cache import LRUCache
from gallery_core.services.vision_client import VisionClient
from gallery_core.tasks.caption_worker import CaptionWorker
from gallery_core.tasks.history_worker import HistoryWorker
from gallery_core.tasks.index_scheduler import IndexScheduler
from gallery_core.tasks.queue_consumer import QueueConsumer, enqueue
from gallery_core.tasks.video_worker import VideoOptimizer

CACHE_MAINTENANCE_INTERVAL = 5 * 60

kv_store: Optional[RedisKeyValueStore] = None
vision_client: Optional[VisionClient] = None
index_scheduler: Optional[IndexScheduler] = None
consumers: list[QueueConsumer] = []


async def _maintain_cache(worker: CaptionWorker, stop_event: asyncio.Event) -> None:
    """定期输出图片缓存统计，使用率过高时清理"""
    while not stop_event.is_set():
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=CACHE_MAINTENANCE_INTERVAL)
        except asyncio.TimeoutError:
            worker.maintain_cache()


@asynccontextmanager
async def lifespan(app: FastAPI):
    global kv_store, vision_client, index_scheduler, consumers

    config_obj = load_config()
    setup_logging(config_obj.log_level)
    logger.info("应用启动中...")

    os.makedirs(config_obj.paths.data_dir, exist_ok=True)
    session_factory = configure_database(database_url_for(config_obj.paths.db_file))
    await init_db()
    logger.info("数据库初始化完成")

    kv_store = RedisKeyValueStore.from_url(config_obj.redis.url)
    if not await kv_store.ping():
        logger.error("Redis 连接失败，请检查 redis.url 配置")

    cache = CacheInvalidator(kv_store, config_obj.cache.namespace)
    registry = FailureRegistry(kv_store)
    workers_cfg = config_obj.workers

    transform_cache = LRUCache(workers_cfg.transform_cache_size)
    vision_client = VisionClient(
        timeout=config_obj.ai.timeout, max_retries=config_obj.ai.max_retries
    )
    caption_worker = CaptionWorker(
        config_obj.paths.photos_dir, transform_cache, vision_client, config_obj.ai
    )
    video_optimizer = VideoOptimizer(
        registry,
        ffmpeg_bin=workers_cfg.ffmpeg_bin,
        max_retries=workers_cfg.video_max_retries,
        failure_ttl=workers_cfg.permanent_failure_ttl,
    )
    history_worker = HistoryWorker(ViewHistoryTracker(session_factory, cache))

    synchronizer = IndexSynchronizer(
        session_factory,
        config_obj.paths.photos_dir,
        config_obj.indexer.reserved_dirs,
        config_obj.indexer.batch_size,
    )
    index_scheduler = IndexScheduler(
        synchronizer,
        cache,
        config_obj.paths.photos_dir,
        config_obj.indexer,
        video_enqueue=partial(enqueue, kv_store.client, workers_cfg.video_queue),
    )

    async def handle_video(payload: dict) -> dict:
        result = await video_optimizer.process(payload)
        await index_scheduler.on_video_result(result)
        return result

    consumers = []
    for i in range(workers_cfg.concurrency):
        for queue_name, handler in (
            (workers_cfg.caption_queue, caption_worker.process),
            (workers_cfg.video_queue, handle_video),
            (workers_cfg.history_queue, history_worker.process),
        ):
            consumers.append(
                QueueConsumer(
                    kv_store.client,
                    queue_name,
                    handler,
                    consumer_name=f"{queue_name}-{i}",
                    max_attempts=workers_cfg.max_attempts,
                    backoff_seconds=workers_cfg.backoff_seconds,
                )
            )

    init_system_router(index_scheduler, consumers, transform_cache)

    for consumer in consumers:
        await consumer.start()
    await index_scheduler.start()

    stop_event = asyncio.Event()
    maintenance_task = asyncio.create_task(_maintain_cache(caption_worker, stop_event))

    yield

    stop_event.set()
    await maintenance_task
    await index_scheduler.stop()
    for consumer in consumers:
        await consumer.stop()
    await vision_client.close()
    await kv_store.close()
    await dispose_db()

    logger.info("应用已关闭")


app = FastAPI(
    title="相册核心服务",
    description="媒体索引、浏览历史与后台任务处理",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """处理 HTTP 异常"""
    return JSONResponse(
        status_code=exc.status_code,
        content=ApiResponse(code=exc.status_code, message=exc.detail, data=None).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """处理请求参数验证错误"""
    errors = [
        {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=ApiResponse(
            code=422, message="请求参数验证失败", data={"errors": errors}
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """处理通用异常"""
    logger.exception(f"服务器内部错误: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content=ApiResponse(code=500, message="服务器内部错误", data=None).model_dump(),
    )


app.include_router(system.router, prefix="/api", tags=["system"])


@app.get("/health")
async def health_check():
    return success_response(data={"status": "healthy"}, message="健康检查通过")
